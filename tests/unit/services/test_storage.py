"""
Unit tests for the local storage adapter.
"""
import pytest

from asset_admin.core.exceptions import PhysicalIOError, ValidationError
from asset_admin.services.storage import join_path, normalize_path, split_path


@pytest.mark.unit
class TestPathHelpers:
    """Test cases for stored path helpers."""

    def test_normalize_path(self):
        """Test leading and trailing slashes are normalized."""
        assert normalize_path("images/") == "/images"
        assert normalize_path("/") == "/"
        assert normalize_path(" /a/b ") == "/a/b"

    def test_join_and_split(self):
        """Test joining and splitting stored paths."""
        assert join_path("/", "a.png") == "/a.png"
        assert join_path("/images/", "a.png") == "/images/a.png"
        assert split_path("/images/a.png") == ("/images", "a.png")
        assert split_path("/a.png") == ("/", "a.png")


@pytest.mark.unit
class TestLocalStorage:
    """Test cases for LocalStorage."""

    def test_write_and_stat(self, storage):
        """Test written blobs can be stat'ed."""
        storage.write("/docs/a.txt", b"hello")

        stat = storage.stat("/docs/a.txt")
        assert stat.size == 5
        assert stat.is_file
        assert storage.exists("/docs/a.txt")
        assert storage.is_readable("/docs/a.txt")

    def test_stat_missing_returns_none(self, storage):
        """Test a missing blob stats as None."""
        assert storage.stat("/missing.txt") is None

    def test_resolve_refuses_escape(self, storage):
        """Test paths outside the root are rejected."""
        with pytest.raises(ValidationError):
            storage.resolve("/../outside.txt")
        assert not storage.is_within_root("/../../etc/passwd")
        assert storage.is_within_root("/images/a.png")

    def test_move(self, storage):
        """Test moving a blob to a new directory."""
        storage.write("/a.txt", b"data")

        storage.move("/a.txt", "/new/dir/a.txt")

        assert not storage.exists("/a.txt")
        assert storage.stat("/new/dir/a.txt").size == 4

    def test_move_refuses_existing_destination(self, storage):
        """Test moves never silently overwrite."""
        storage.write("/a.txt", b"a")
        storage.write("/b.txt", b"b")

        with pytest.raises(PhysicalIOError):
            storage.move("/a.txt", "/b.txt")

        storage.move("/a.txt", "/b.txt", overwrite=True)
        assert storage.resolve("/b.txt").read_bytes() == b"a"

    def test_move_missing_source(self, storage):
        """Test moving a missing blob raises a storage error."""
        with pytest.raises(PhysicalIOError):
            storage.move("/missing.txt", "/b.txt")

    def test_remove(self, storage):
        """Test removing reports whether something was deleted."""
        storage.write("/a.txt", b"a")
        assert storage.remove("/a.txt") is True
        assert storage.remove("/a.txt") is False

    def test_ensure_dir_is_idempotent(self, storage):
        """Test creating an existing directory succeeds."""
        first = storage.ensure_dir("/x/y")
        second = storage.ensure_dir("/x/y")
        assert first == second
        assert first.is_dir()

    def test_ensure_dir_over_file_fails(self, storage):
        """Test a file in the way of a directory is an error."""
        storage.write("/x", b"file")
        with pytest.raises(PhysicalIOError):
            storage.ensure_dir("/x")

    def test_backup_and_sidecar(self, storage):
        """Test backups land under the backup root with a JSON sidecar."""
        storage.write("/docs/a.txt", b"keep me")

        backup = storage.backup("/docs/a.txt", "delete")
        sidecar = storage.write_backup_sidecar(backup, '{"ok": true}')

        assert storage.backup_root in backup.parents
        assert backup.read_bytes() == b"keep me"
        assert sidecar.name.endswith(".json")
        assert sidecar.read_text() == '{"ok": true}'

    def test_url_for(self, storage):
        """Test public URLs are derived from the stored path."""
        assert storage.url_for("/images/a.png") == "/uploads/images/a.png"
