from datetime import timedelta

from sqlalchemy import select

from settlement.models.scheduler_lock import SchedulerLock
from settlement.services.scheduler_lock import (
    LOCK_NAME,
    describe_scheduler_lock,
    refresh_scheduler_lock,
    release_scheduler_lock,
    try_acquire_scheduler_lock,
)
from settlement.utils.time import ensure_utc, utcnow

OWNER = "settlement.services.scheduler_lock._owner_id"


def _lock(db_session) -> SchedulerLock:
    return db_session.execute(select(SchedulerLock).where(SchedulerLock.name == LOCK_NAME)).scalar_one()


def test_same_runner_can_reacquire(db_session):
    assert try_acquire_scheduler_lock(db_session=db_session) is True
    assert try_acquire_scheduler_lock(db_session=db_session) is True

    release_scheduler_lock(db_session=db_session)
    assert describe_scheduler_lock(db_session=db_session)["present"] is False


def test_live_lock_blocks_other_runner(monkeypatch, db_session):
    monkeypatch.setattr(OWNER, lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300)

    monkeypatch.setattr(OWNER, lambda: "node-B")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300) is False
    # Only the owner may release.
    release_scheduler_lock(db_session=db_session)
    assert _lock(db_session).owner == "node-A"


def test_expired_lock_is_taken_over(monkeypatch, db_session):
    monkeypatch.setattr(OWNER, lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=60)

    lock = _lock(db_session)
    lock.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()
    assert describe_scheduler_lock(db_session=db_session)["stale"] is True

    monkeypatch.setattr(OWNER, lambda: "node-B")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=300)
    db_session.expire_all()
    assert _lock(db_session).owner == "node-B"


def test_heartbeat_extends_expiry(monkeypatch, db_session):
    monkeypatch.setattr(OWNER, lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=10)
    before = ensure_utc(_lock(db_session).expires_at)

    refresh_scheduler_lock(db_session=db_session, ttl_seconds=600)
    db_session.expire_all()

    assert ensure_utc(_lock(db_session).expires_at) > before + timedelta(seconds=500)


def test_describe_reports_owner_and_expiry(monkeypatch, db_session):
    monkeypatch.setattr(OWNER, lambda: "node-A")
    assert try_acquire_scheduler_lock(db_session=db_session, ttl_seconds=60)

    info = describe_scheduler_lock(db_session=db_session)
    assert info["status"] == "owned_by_self"
    assert info["owner"] == "node-A"
    assert 0 < info["expires_in_seconds"] <= 60
    assert info["stale"] is False

    monkeypatch.setattr(OWNER, lambda: "node-B")
    assert describe_scheduler_lock(db_session=db_session)["status"] == "owned_by_other"
