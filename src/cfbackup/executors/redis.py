"""Redis executor: RDB snapshots through redis-cli.

Restoring an RDB file requires replacing the server's data directory, which
a bound service does not allow, so this variant only supports backups.
"""

from typing import Dict, List

from cfbackup.executors.base import Operation
from cfbackup.executors.command import CommandExecutor


class RedisExecutor(CommandExecutor):
    capabilities = frozenset({Operation.BACKUP})
    default_port = 6379

    def environment(self) -> Dict[str, str]:
        password = self.connection.password
        return {"REDISCLI_AUTH": password} if password else {}

    def backup_command(self) -> List[str]:
        conn = self.connection
        argv = ["redis-cli", "-h", conn.host, "-p", str(conn.port)]
        if conn.username:
            argv += ["--user", conn.username]
        argv += self.options.backup_options
        argv += ["--rdb", "-"]
        return argv
