"""MySQL / MariaDB executor: mysqldump for backups, mysql for restores."""

from typing import Dict, List

from cfbackup.executors.base import Operation
from cfbackup.executors.command import CommandExecutor


class MySQLExecutor(CommandExecutor):
    capabilities = frozenset({Operation.BACKUP, Operation.RESTORE})
    default_port = 3306

    def environment(self) -> Dict[str, str]:
        password = self.connection.password
        return {"MYSQL_PWD": password} if password else {}

    def _connection_args(self) -> List[str]:
        conn = self.connection
        return [f"--host={conn.host}", f"--port={conn.port}", f"--user={conn.username}"]

    def backup_command(self) -> List[str]:
        database = self.connection.database
        argv = ["mysqldump", *self._connection_args()]
        argv += ["--single-transaction", "--quick", "--routines", "--triggers"]
        argv += [f"--ignore-table={database}.{table}" for table in self.options.ignore_tables]
        argv += self.options.backup_options
        argv.append(database)
        return argv

    def restore_command(self) -> List[str]:
        argv = ["mysql", *self._connection_args()]
        if self.options.force_import:
            argv.append("--force")
        argv += self.options.restore_options
        argv.append(self.connection.database)
        return argv
