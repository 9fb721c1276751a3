"""PostgreSQL executor: pg_dump for backups, psql for restores."""

from typing import Dict, List

from cfbackup.executors.base import Operation
from cfbackup.executors.command import CommandExecutor


class PostgresExecutor(CommandExecutor):
    capabilities = frozenset({Operation.BACKUP, Operation.RESTORE})
    default_port = 5432

    def environment(self) -> Dict[str, str]:
        conn = self.connection
        env = {
            "PGHOST": conn.host,
            "PGPORT": str(conn.port),
            "PGUSER": conn.username,
            "PGDATABASE": conn.database,
        }
        if conn.password:
            env["PGPASSWORD"] = conn.password
        return env

    def backup_command(self) -> List[str]:
        argv = ["pg_dump", "--clean", "--if-exists", "--no-owner", "--no-privileges"]
        argv += [f"--exclude-table={table}" for table in self.options.ignore_tables]
        argv += self.options.backup_options
        return argv

    def restore_command(self) -> List[str]:
        argv = ["psql", "--quiet", "--no-psqlrc"]
        if not self.options.force_import:
            argv.append("--set=ON_ERROR_STOP=1")
        argv += self.options.restore_options
        return argv
