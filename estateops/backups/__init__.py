from estateops.backups.backup import BackupPipeline, build_command
from estateops.backups.executor import CommandExecutor, CommandResult, SubprocessCommandExecutor
from estateops.backups.restore import RestorePipeline
from estateops.backups.types import BackupParameters, RestoreParameters

__all__ = [
    "BackupPipeline",
    "RestorePipeline",
    "BackupParameters",
    "RestoreParameters",
    "CommandExecutor",
    "CommandResult",
    "SubprocessCommandExecutor",
    "build_command",
]
