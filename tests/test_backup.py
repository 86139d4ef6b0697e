import os
import threading
from datetime import datetime, timedelta, timezone

import pytest

from fintrack.backup import BackupManager, Scheduler, snapshot_stamp, sweep_tokens_job
from fintrack.models import RefreshToken, utcnow


@pytest.fixture
def manager(tmp_path):
    db_path = tmp_path / "financeiro.db"
    db_path.write_bytes(b"sqlite-bytes")
    return BackupManager(str(db_path), str(tmp_path / "backups"), retention=10)


def test_snapshot_stamp_is_filename_safe_and_sortable():
    early = snapshot_stamp(datetime(2024, 5, 1, 9, 30, 0, 500000, tzinfo=timezone.utc))
    late = snapshot_stamp(datetime(2024, 5, 1, 10, 0, 0, tzinfo=timezone.utc))
    assert early == "2024-05-01T09-30-00-500Z"
    assert ":" not in late and "." not in late
    assert early < late


def test_create_backup_copies_database(manager):
    path = manager.create_backup()
    assert os.path.basename(path).startswith("backup-")
    with open(path, "rb") as fh:
        assert fh.read() == b"sqlite-bytes"
    assert manager.state == BackupManager.IDLE


def test_retention_keeps_ten_most_recent(manager):
    created = [manager.create_backup() for _ in range(13)]
    kept = sorted(os.listdir(manager.backup_dir))
    assert len(kept) == 10
    assert kept == sorted(os.path.basename(p) for p in created[-10:])


def test_prune_ignores_foreign_files(manager):
    os.makedirs(manager.backup_dir)
    open(os.path.join(manager.backup_dir, "notes.txt"), "w").close()
    for _ in range(11):
        manager.create_backup()
    assert "notes.txt" in os.listdir(manager.backup_dir)
    assert len(manager.list_backups()) == 10


def test_list_backups_newest_first(manager):
    first = manager.create_backup()
    second = manager.create_backup()
    listing = manager.list_backups()
    assert [b["filename"] for b in listing] == [os.path.basename(second), os.path.basename(first)]
    assert listing[0]["size"] == len(b"sqlite-bytes")
    assert listing[0]["date"] == os.path.basename(second)[len("backup-"):-len(".db")]


def test_backup_failure_is_logged_not_raised(tmp_path, caplog):
    manager = BackupManager(str(tmp_path / "missing.db"), str(tmp_path / "backups"))
    assert manager.create_backup() is None
    assert manager.state == BackupManager.IDLE
    assert "Backup of" in caplog.text


def test_registration_triggers_backup(client, register, app):
    register("ana")
    assert len(app.state.backups.list_backups()) == 1


def test_backup_endpoints(client, register, bearer, settings):
    session = register("ana")
    listing = client.get("/api/backup/list", headers=bearer(session))
    assert listing.status_code == 200
    assert set(listing.json()[0]) == {"filename", "date", "size"}

    download = client.get("/api/backup/download", headers=bearer(session))
    assert download.status_code == 200
    assert "controle-financeiro-" in download.headers["content-disposition"]
    with open(settings.db_path, "rb") as fh:
        assert download.content == fh.read()

    assert client.get("/api/backup/list").status_code == 401
    assert client.get("/api/backup/download").status_code == 401


def test_sweep_removes_only_expired_tokens(app, register, db):
    register("ana")
    session = db.query(RefreshToken).one()
    db.add(RefreshToken(user_id=session.user_id, token="stale", expires_at=utcnow() - timedelta(days=1)))
    db.commit()

    sweep_tokens_job(app.state.session_factory)()
    assert [t.token for t in db.query(RefreshToken).all()] == [session.token]


def test_scheduler_isolates_failing_jobs(caplog):
    calls = []

    def broken():
        raise RuntimeError("disk full")

    scheduler = Scheduler()
    scheduler.every(0, "broken", broken)
    scheduler.every(0, "ok", lambda: calls.append(1))
    scheduler.run_pending()
    scheduler.run_pending()
    assert calls == [1, 1]
    assert "Maintenance job broken failed" in caplog.text


def test_scheduler_start_stop():
    fired = threading.Event()
    scheduler = Scheduler(tick=0.01)
    scheduler.every(0.01, "ping", fired.set)
    scheduler.start()
    try:
        assert fired.wait(2)
        assert scheduler.running
    finally:
        scheduler.stop()
    assert not scheduler.running
