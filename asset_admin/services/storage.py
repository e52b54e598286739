"""
Filesystem adapter for file asset blobs.

Asset paths are stored relative to the storage root with a leading ``/``.
Every public method takes such a relative path; resolving it to an
absolute path refuses anything that would land outside the root.
"""
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from asset_admin.core.config import settings
from asset_admin.core.exceptions import PhysicalIOError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    """Subset of ``os.stat`` the services care about."""
    size: int
    modified_at: datetime
    is_file: bool


def normalize_path(path: str) -> str:
    """Return ``path`` with a single leading slash and no trailing slash."""
    cleaned = "/" + path.strip().strip("/")
    return cleaned if cleaned != "/" else "/"


def join_path(directory: str, name: str) -> str:
    directory = normalize_path(directory)
    if directory == "/":
        return f"/{name}"
    return f"{directory}/{name}"


def split_path(path: str):
    """Split a stored path into ``(directory, file name)``."""
    path = normalize_path(path)
    directory, _, name = path.rpartition("/")
    return (directory or "/"), name


class LocalStorage:
    """Physical store rooted at a local directory."""

    def __init__(
        self,
        root: Union[str, Path, None] = None,
        backup_root: Union[str, Path, None] = None,
        public_url_prefix: Optional[str] = None
    ):
        self.root = Path(root or settings.STORAGE_ROOT).resolve()
        self.backup_root = Path(backup_root or settings.BACKUP_ROOT).resolve()
        prefix = settings.PUBLIC_URL_PREFIX if public_url_prefix is None else public_url_prefix
        self.public_url_prefix = prefix.rstrip("/")

    def url_for(self, rel_path: str) -> str:
        return f"{self.public_url_prefix}{normalize_path(rel_path)}"

    def resolve(self, rel_path: str) -> Path:
        """
        Map a stored path to an absolute filesystem path.

        Raises:
            ValidationError: If the path escapes the storage root
        """
        candidate = (self.root / rel_path.lstrip("/")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise ValidationError(f"Path escapes storage root: {rel_path}")
        return candidate

    def is_within_root(self, rel_path: str) -> bool:
        try:
            self.resolve(rel_path)
            return True
        except ValidationError:
            return False

    def exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).exists()

    def stat(self, rel_path: str) -> Optional[FileStat]:
        """Stat a stored path; ``None`` when nothing is there."""
        target = self.resolve(rel_path)
        try:
            info = target.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PhysicalIOError(f"Failed to stat {rel_path}: {e}", path=rel_path) from e
        return FileStat(
            size=info.st_size,
            modified_at=datetime.fromtimestamp(info.st_mtime, tz=timezone.utc),
            is_file=target.is_file(),
        )

    def is_readable(self, rel_path: str) -> bool:
        return os.access(self.resolve(rel_path), os.R_OK)

    def ensure_dir(self, rel_dir: str) -> Path:
        """Create a directory tree; an already existing directory is success."""
        target = self.resolve(rel_dir)
        try:
            target.mkdir(parents=True, exist_ok=True)
        except FileExistsError:
            # Lost a race against a concurrent creator
            if not target.is_dir():
                raise PhysicalIOError(f"Not a directory: {rel_dir}", path=rel_dir)
        except OSError as e:
            raise PhysicalIOError(f"Failed to create directory {rel_dir}: {e}", path=rel_dir) from e
        return target

    def write(self, rel_path: str, content: bytes) -> int:
        target = self.resolve(rel_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                f.write(content)
        except OSError as e:
            raise PhysicalIOError(f"Failed to write {rel_path}: {e}", path=rel_path) from e
        return len(content)

    def move(self, src_path: str, dst_path: str, overwrite: bool = False) -> None:
        """
        Move a blob inside the storage root.

        Raises:
            PhysicalIOError: If the destination exists and ``overwrite`` is false,
                or the filesystem refuses the move
        """
        src = self.resolve(src_path)
        dst = self.resolve(dst_path)
        if dst.exists() and not overwrite:
            raise PhysicalIOError(f"Destination already exists: {dst_path}", path=dst_path)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            os.replace(src, dst)
        except OSError as e:
            raise PhysicalIOError(f"Failed to move {src_path} to {dst_path}: {e}", path=src_path) from e

    def remove(self, rel_path: str) -> bool:
        """Delete a blob. Returns False when it was already gone."""
        target = self.resolve(rel_path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PhysicalIOError(f"Failed to remove {rel_path}: {e}", path=rel_path) from e
        return True

    def backup(self, rel_path: str, label: str) -> Path:
        """
        Copy a blob to ``<backup_root>/<label>/<rel_path>.<timestamp>``.

        Returns:
            Path: Absolute path of the backup copy
        """
        src = self.resolve(rel_path)
        target = self.backup_target(rel_path, label)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, target)
        except OSError as e:
            raise PhysicalIOError(f"Failed to back up {rel_path}: {e}", path=rel_path) from e
        logger.debug(f"Backed up {rel_path} to {target}")
        return target

    def backup_target(self, rel_path: str, label: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        return self.backup_root / label / f"{rel_path.lstrip('/')}.{stamp}"

    def write_backup_sidecar(self, backup_path: Path, content: str) -> Path:
        sidecar = backup_path.with_name(backup_path.name + ".json")
        try:
            sidecar.parent.mkdir(parents=True, exist_ok=True)
            sidecar.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PhysicalIOError(f"Failed to write backup metadata {sidecar}: {e}") from e
        return sidecar


def get_storage() -> LocalStorage:
    """Dependency returning the configured storage backend."""
    return LocalStorage()
