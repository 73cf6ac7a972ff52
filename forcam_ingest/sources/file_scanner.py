"""
Drop-file discovery.

Layout: <root>/<machine>/<file>. Files inside a machine's Backup/ or Error/
directory are never candidates. The scan and the watch trigger both build
their tasks through FileScanner.task_for so they agree on what a candidate is.
"""

from pathlib import Path

from forcam_ingest.core.config import FileSettings
from forcam_ingest.core.models import FileTask
from forcam_ingest.observability.logger import get_logger

logger = get_logger(__name__)


class FileScanner:
    """
    Enumerates candidate drop files under the root.

    Args:
        root: Drop-file root directory
        settings: File section of the run settings
    """

    def __init__(self, root: Path, settings: FileSettings):
        self.root = Path(root)
        self.settings = settings
        self.excluded_dirs = {settings.backup_dir_name.lower(), settings.error_dir_name.lower()}

    def machine_dirs(self) -> list[Path]:
        """Machine directories in name order."""
        return sorted(
            (p for p in self.root.iterdir() if p.is_dir() and not p.name.startswith(".")),
            key=lambda p: p.name,
        )

    def is_candidate(self, path: Path, require_file: bool = True) -> bool:
        """A non-hidden file with a configured extension directly inside a machine directory."""
        path = Path(path)
        if path.name.startswith("."):
            return False
        if path.suffix.lower() not in self.settings.extensions:
            return False
        machine_dir = path.parent
        if machine_dir.parent.resolve() != self.root.resolve():
            return False
        if machine_dir.name.lower() in self.excluded_dirs or machine_dir.name.startswith("."):
            return False
        return path.is_file() if require_file else True

    def task_for(self, path: Path) -> FileTask | None:
        """
        Build the FileTask for a path, or None if it is not a candidate.

        Args:
            path: Any path under the root

        Returns:
            FileTask in state discovered, or None
        """
        path = Path(path)
        if not self.is_candidate(path):
            return None
        return FileTask(path=path, machine_name=path.parent.name)

    def scan(self) -> list[FileTask]:
        """
        Enumerate all machine directories and their candidate files.

        Returns:
            Tasks ordered by machine, then file name
        """
        if not self.root.is_dir():
            logger.error("Drop-file root is not a directory", extra={"root": str(self.root)})
            return []

        tasks: list[FileTask] = []
        for machine_dir in self.machine_dirs():
            if machine_dir.name.lower() in self.excluded_dirs:
                continue
            for path in sorted(machine_dir.iterdir(), key=lambda p: p.name):
                task = self.task_for(path)
                if task is not None:
                    tasks.append(task)

        logger.info(
            "Drop-file scan complete",
            extra={"root": str(self.root), "candidates": len(tasks)},
        )
        return tasks
