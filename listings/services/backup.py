"""
Filesystem snapshots of the local image directories.

A backup is a directory ``<backup_dir>/backup-<ms>-<uuid8>`` holding one copy
per source directory (named after the source's basename) and a
``backup-info.json`` metadata file. Only the newest ``max_backups`` are kept.
"""
import json
import re
import shutil
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from structlog import get_logger

from listings.config import settings

logger = get_logger()

INFO_FILE = "backup-info.json"
BACKUP_ID_RE = re.compile(r"^backup-\d+-[0-9a-f]{8}$")


class BackupError(Exception):
    pass


class BackupNotFound(BackupError):
    pass


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


def _copy_tree(src: Path, dest: Path) -> tuple[int, int]:
    count = size = 0
    dest.mkdir(parents=True, exist_ok=True)
    for entry in src.iterdir():
        target = dest / entry.name
        if entry.is_dir():
            sub_count, sub_size = _copy_tree(entry, target)
            count += sub_count
            size += sub_size
        elif entry.is_file():
            shutil.copy2(entry, target)
            count += 1
            size += entry.stat().st_size
    return count, size


class ImageBackupManager:
    def __init__(self, backup_dir, source_dirs: Iterable, max_backups: int = 5):
        self.backup_dir = Path(backup_dir)
        self.source_dirs = [Path(d) for d in source_dirs]
        self.max_backups = max(1, int(max_backups))

    def _backup_path(self, backup_id: str) -> Path:
        if not BACKUP_ID_RE.match(backup_id or ""):
            raise BackupNotFound(f"Backup {backup_id} not found")
        path = self.backup_dir / backup_id
        if not path.is_dir():
            raise BackupNotFound(f"Backup {backup_id} not found")
        return path

    def create_backup(self, description: Optional[str] = None, prune: bool = True) -> dict:
        backup_id = f"backup-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
        path = self.backup_dir / backup_id
        file_count = total_size = 0
        try:
            path.mkdir(parents=True)
            for source in self.source_dirs:
                if source.is_dir():
                    count, size = _copy_tree(source, path / source.name)
                    file_count += count
                    total_size += size
            info = {
                "id": backup_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "fileCount": file_count,
                "totalSize": total_size,
                "description": description,
            }
            (path / INFO_FILE).write_text(json.dumps(info, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Image backup failed", backup_id=backup_id, error=str(e))
            shutil.rmtree(path, ignore_errors=True)
            raise BackupError(f"Backup creation failed: {e}") from e

        logger.info("Created image backup", backup_id=backup_id, files=file_count, size=format_bytes(total_size))
        if prune:
            self.cleanup_old_backups()
        return info

    def restore_backup(self, backup_id: str) -> dict:
        path = self._backup_path(backup_id)
        info = self._read_info(path)
        if info is None:
            raise BackupError(f"Backup {backup_id} has no readable metadata")

        # Pruning waits until the copy is done so the backup being restored survives.
        self.create_backup(f"Pre-restore backup for {backup_id}", prune=False)
        try:
            for source in self.source_dirs:
                stored = path / source.name
                if stored.is_dir():
                    _copy_tree(stored, source)
        except OSError as e:
            logger.error("Image restore failed", backup_id=backup_id, error=str(e))
            raise BackupError(f"Backup restore failed: {e}") from e
        finally:
            self.cleanup_old_backups()

        logger.info("Restored image backup", backup_id=backup_id, files=info.get("fileCount"))
        return info

    def _read_info(self, path: Path) -> Optional[dict]:
        try:
            return json.loads((path / INFO_FILE).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Could not read backup info", backup=path.name, error=str(e))
            return None

    def list_backups(self) -> list[dict]:
        if not self.backup_dir.is_dir():
            return []
        backups = []
        for entry in self.backup_dir.iterdir():
            if entry.is_dir() and entry.name.startswith("backup-"):
                info = self._read_info(entry)
                if info is not None:
                    backups.append(info)
        return sorted(backups, key=lambda b: b.get("timestamp") or "", reverse=True)

    def get_backup(self, backup_id: str) -> dict:
        info = self._read_info(self._backup_path(backup_id))
        if info is None:
            raise BackupNotFound(f"Backup {backup_id} not found")
        return info

    def delete_backup(self, backup_id: str):
        path = self._backup_path(backup_id)
        shutil.rmtree(path)
        logger.info("Deleted image backup", backup_id=backup_id)

    def cleanup_old_backups(self) -> int:
        stale = self.list_backups()[self.max_backups:]
        for backup in stale:
            try:
                self.delete_backup(backup["id"])
            except (BackupError, OSError) as e:
                logger.warning("Failed to remove old backup", backup_id=backup.get("id"), error=str(e))
        if stale:
            logger.info("Cleaned up old backups", removed=len(stale))
        return len(stale)


def get_backup_manager() -> ImageBackupManager:
    return ImageBackupManager(
        settings.IMAGE_BACKUP_DIR,
        settings.image_source_dirs,
        max_backups=settings.MAX_IMAGE_BACKUPS,
    )
