"""Per-service-type backup/restore executors.

Usage:
    from cfbackup.executors import default_registry

    executor = default_registry().resolve(service, options)
    stream, extension = await executor.backup()
"""

from cfbackup.executors.base import Executor, Operation
from cfbackup.executors.command import CommandExecutor
from cfbackup.executors.mongodb import MongoDBExecutor
from cfbackup.executors.mysql import MySQLExecutor
from cfbackup.executors.postgres import PostgresExecutor
from cfbackup.executors.redis import RedisExecutor
from cfbackup.executors.registry import ExecutorRegistry, default_registry

__all__ = [
    "Executor",
    "Operation",
    "CommandExecutor",
    "PostgresExecutor",
    "MySQLExecutor",
    "MongoDBExecutor",
    "RedisExecutor",
    "ExecutorRegistry",
    "default_registry",
]
