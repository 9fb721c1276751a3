"""Environment loader for the configuration overlay.

Only variables carrying the cfbackup prefix are collected, so the
resolved configuration never depends on unrelated process environment.

Sources, lowest precedence first:
1) .env file (if provided and exists)
2) OS environment variables
3) Explicit overrides
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

ENV_PREFIX = "CFBACKUP_"


class EnvLoader:
    """Collect prefixed key/value pairs from a .env file and the environment."""

    def __init__(
        self,
        env_file: Optional[Path | str] = None,
        prefix: str = ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.env_file = Path(env_file) if env_file else None
        self.prefix = prefix
        self._environ = environ

    def _wanted(self, key: str) -> bool:
        return key.startswith(self.prefix)

    def load(self, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Return the prefixed variables with .env < environment < overrides."""
        data: Dict[str, str] = {}

        env_path = self.env_file or Path.cwd() / ".env"
        if env_path.is_file():
            for key, value in dotenv_values(env_path).items():
                if value is not None and self._wanted(key):
                    data[key] = value

        environ = os.environ if self._environ is None else self._environ
        data.update({k: v for k, v in environ.items() if self._wanted(k)})

        if overrides:
            data.update({k: str(v) for k, v in overrides.items()})

        return data


__all__ = ["EnvLoader", "ENV_PREFIX"]
