"""At-rest encryption for catalog objects.

Objects are encrypted with AES-256-GCM. The layout of an encrypted object is::

    nonce (12 bytes) | ciphertext | tag (16 bytes)

The nonce is random per object, so the same key material is all that is
needed to reverse the transform. The AES key is the SHA-256 digest of the
configured key material.
"""

import hashlib
import os
from typing import AsyncIterable, AsyncIterator, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from cfbackup.exceptions import StorageError

NONCE_SIZE = 12
TAG_SIZE = 16


def derive_key(material: Union[str, bytes]) -> bytes:
    """Derive a 256-bit AES key from the configured key material."""
    if isinstance(material, str):
        material = material.encode("utf-8")
    if not material:
        raise ValueError("encryption key material must not be empty")
    return hashlib.sha256(material).digest()


async def _close(chunks: AsyncIterable[bytes]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


async def encrypt_stream(
    chunks: AsyncIterable[bytes], material: Union[str, bytes]
) -> AsyncIterator[bytes]:
    """Encrypt a byte stream, yielding nonce, ciphertext chunks and tag.

    Closing the returned iterator also closes ``chunks``.
    """
    nonce = os.urandom(NONCE_SIZE)
    encryptor = Cipher(algorithms.AES(derive_key(material)), modes.GCM(nonce)).encryptor()

    try:
        yield nonce
        async for chunk in chunks:
            out = encryptor.update(chunk)
            if out:
                yield out
        yield encryptor.finalize() + encryptor.tag
    finally:
        await _close(chunks)


async def decrypt_stream(
    chunks: AsyncIterable[bytes], material: Union[str, bytes]
) -> AsyncIterator[bytes]:
    """Reverse ``encrypt_stream``.

    The trailing TAG_SIZE bytes are held back until the stream ends so the
    tag can be verified; plaintext is yielded as it is decrypted. Closing
    the returned iterator also closes ``chunks``.

    Raises:
        StorageError: If the object is truncated or fails authentication
    """
    key = derive_key(material)
    buffer = bytearray()
    decryptor = None

    try:
        async for chunk in chunks:
            buffer += chunk
            if decryptor is None:
                if len(buffer) < NONCE_SIZE:
                    continue
                nonce = bytes(buffer[:NONCE_SIZE])
                del buffer[:NONCE_SIZE]
                decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).decryptor()

            if len(buffer) > TAG_SIZE:
                body = bytes(buffer[:-TAG_SIZE])
                del buffer[:-TAG_SIZE]
                out = decryptor.update(body)
                if out:
                    yield out
    finally:
        await _close(chunks)

    if decryptor is None or len(buffer) < TAG_SIZE:
        raise StorageError("encrypted object is truncated")

    try:
        final = decryptor.finalize_with_tag(bytes(buffer))
    except InvalidTag:
        raise StorageError("decryption failed: wrong key or corrupted object") from None
    if final:
        yield final
