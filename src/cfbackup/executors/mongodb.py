"""MongoDB executor: mongodump/mongorestore in gzip archive mode."""

from typing import List
from urllib.parse import quote

from cfbackup.executors.base import Operation
from cfbackup.executors.command import CommandExecutor


class MongoDBExecutor(CommandExecutor):
    capabilities = frozenset({Operation.BACKUP, Operation.RESTORE})
    default_port = 27017
    # mongodump writes a gzip archive itself
    compress = False

    def _uri(self) -> str:
        conn = self.connection
        if conn.uri:
            return conn.uri
        auth = ""
        if conn.username:
            auth = quote(conn.username, safe="")
            if conn.password:
                auth += ":" + quote(conn.password, safe="")
            auth += "@"
        return f"mongodb://{auth}{conn.host}:{conn.port}/{conn.database}"

    def backup_command(self) -> List[str]:
        argv = ["mongodump", f"--uri={self._uri()}", "--archive", "--gzip"]
        argv += [f"--excludeCollection={name}" for name in self.options.ignore_tables]
        argv += self.options.backup_options
        return argv

    def restore_command(self) -> List[str]:
        argv = ["mongorestore", f"--uri={self._uri()}", "--archive", "--gzip", "--drop"]
        argv += self.options.restore_options
        return argv
