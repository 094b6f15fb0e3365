import pytest

from conftest import auth_headers
from listings.main import app
from listings.services.backup import BackupNotFound, ImageBackupManager, format_bytes, get_backup_manager


@pytest.fixture
def image_dirs(tmp_path):
    icons = tmp_path / "public" / "icons"
    uploads = tmp_path / "public" / "uploads"
    (uploads / "2024").mkdir(parents=True)
    icons.mkdir(parents=True)
    (icons / "profile.gif").write_bytes(b"GIF89a")
    (uploads / "2024" / "house.webp").write_bytes(b"x" * 100)
    return icons, uploads


@pytest.fixture
def manager(tmp_path, image_dirs):
    return ImageBackupManager(tmp_path / "backups", image_dirs, max_backups=3)


def test_format_bytes():
    assert format_bytes(0) == "0 Bytes"
    assert format_bytes(512) == "512 Bytes"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(5 * 1024 * 1024) == "5 MB"


def test_create_backup_copies_every_source(manager, tmp_path):
    info = manager.create_backup("before migration")

    assert info["fileCount"] == 2
    assert info["totalSize"] == 106
    assert info["description"] == "before migration"
    stored = tmp_path / "backups" / info["id"]
    assert (stored / "icons" / "profile.gif").read_bytes() == b"GIF89a"
    assert (stored / "uploads" / "2024" / "house.webp").exists()
    assert (stored / "backup-info.json").exists()
    assert manager.get_backup(info["id"]) == info


def test_missing_source_dirs_are_skipped(tmp_path):
    manager = ImageBackupManager(tmp_path / "backups", [tmp_path / "nowhere"])
    info = manager.create_backup()
    assert info["fileCount"] == 0
    assert info["totalSize"] == 0


def test_only_newest_backups_are_kept(manager):
    ids = [manager.create_backup(f"run {i}")["id"] for i in range(5)]

    kept = [b["id"] for b in manager.list_backups()]
    assert kept == list(reversed(ids[-3:]))
    with pytest.raises(BackupNotFound):
        manager.get_backup(ids[0])


def test_restore_backup(manager, image_dirs):
    icons, uploads = image_dirs
    info = manager.create_backup()

    (icons / "profile.gif").write_bytes(b"broken")
    (uploads / "2024" / "house.webp").unlink()

    restored = manager.restore_backup(info["id"])
    assert restored["id"] == info["id"]
    assert (icons / "profile.gif").read_bytes() == b"GIF89a"
    assert (uploads / "2024" / "house.webp").read_bytes() == b"x" * 100

    backups = manager.list_backups()
    assert info["id"] in [b["id"] for b in backups]
    assert any(b["description"] == f"Pre-restore backup for {info['id']}" for b in backups)


def test_unknown_or_malformed_ids(manager):
    for backup_id in ("backup-1-deadbeef", "../../etc", ""):
        with pytest.raises(BackupNotFound):
            manager.restore_backup(backup_id)
        with pytest.raises(BackupNotFound):
            manager.delete_backup(backup_id)


def test_unreadable_backup_is_ignored(manager, tmp_path):
    good = manager.create_backup()
    (tmp_path / "backups" / "backup-1-0000abcd").mkdir()
    assert [b["id"] for b in manager.list_backups()] == [good["id"]]


@pytest.fixture
def backup_api(manager):
    app.dependency_overrides[get_backup_manager] = lambda: manager
    yield manager
    app.dependency_overrides.pop(get_backup_manager, None)


@pytest.mark.asyncio
async def test_backup_endpoints(client, superadmin, agent, backup_api):
    url = "/api/admin/image-backups"
    assert (await client.get(url, headers=auth_headers(agent))).status_code == 403

    created = await client.post(url, json={"description": "nightly"}, headers=auth_headers(superadmin))
    assert created.status_code == 201
    backup = created.json()["data"]
    assert backup["fileCount"] == 2
    assert backup["description"] == "nightly"

    no_body = await client.post(url, headers=auth_headers(superadmin))
    assert no_body.status_code == 201

    listed = await client.get(url, headers=auth_headers(superadmin))
    assert len(listed.json()["data"]) == 2

    fetched = await client.get(f"{url}/{backup['id']}", headers=auth_headers(superadmin))
    assert fetched.json()["data"]["id"] == backup["id"]

    restored = await client.post(f"{url}/{backup['id']}/restore", headers=auth_headers(superadmin))
    assert restored.status_code == 200
    assert restored.json()["message"] == "Backup restored successfully"

    deleted = await client.delete(f"{url}/{backup['id']}", headers=auth_headers(superadmin))
    assert deleted.status_code == 200
    missing = await client.get(f"{url}/{backup['id']}", headers=auth_headers(superadmin))
    assert missing.status_code == 404
    assert missing.json() == {"success": False, "error": f"Backup {backup['id']} not found"}
