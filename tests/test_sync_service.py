import threading
from datetime import timedelta

import pytest

import db
from conftest import FakeRemote, StepClock
from core.device_identity import StaticDeviceIdentityProvider
from core.errors import ConnectivityError, SyncInProgressError
from core.pull import PullReconciler
from core.push import PushReconciler
from core.sync_service import SyncService


def _service(remote, clock, messages=None) -> SyncService:
    identity = StaticDeviceIdentityProvider("device_test")
    return SyncService(
        remote,
        identity,
        puller=PullReconciler(remote, clock=clock),
        pusher=PushReconciler(remote, identity, clock=clock),
        log_callback=messages.append if messages is not None else None,
    )


def test_full_sync_links_new_local_product(database, clock) -> None:
    rice = db.insert_product({"name": "Rice", "quantity": 50})
    remote = FakeRemote()
    remote.push_response = {
        "products": [{"id": "srv_1", "localId": rice, "name": "Rice", "quantity": 50}],
        "invoices": [],
    }

    result = _service(remote, clock).full_sync()

    assert result.to_dict() == {"pulled": 0, "pushed": 1}
    row = db.fetch_product(rice)
    assert row["serverId"] == "srv_1"
    assert row["syncedAt"] == db.format_timestamp(clock.now)


def test_full_sync_does_not_push_rows_it_just_pulled(database, clock) -> None:
    remote = FakeRemote(
        {"products": [{"_id": "p1", "name": "Beans", "quantity": 4}], "invoices": []}
    )
    local = db.insert_product({"name": "Rice"})
    identity = StaticDeviceIdentityProvider("device_test")
    later = StepClock(clock.now + timedelta(minutes=5))
    # By the time the push runs the pulled row is already past the staleness window.
    service = SyncService(
        remote,
        identity,
        puller=PullReconciler(remote, clock=clock),
        pusher=PushReconciler(remote, identity, clock=later),
    )

    result = service.full_sync()

    assert result.pulled == 1
    assert result.pushed == 1
    assert [entry["localId"] for entry in remote.pushes[0]["products"]] == [local]


def test_second_pull_after_full_sync_makes_no_changes(database, clock) -> None:
    remote = FakeRemote(
        {"products": [{"_id": "p1", "name": "Beans", "quantity": 4}], "invoices": []}
    )
    service = _service(remote, clock)
    service.full_sync()
    before = db.fetch_products()

    service.pull()

    after = db.fetch_products()
    assert [(row["id"], row["name"], row["serverId"]) for row in after] == [
        (row["id"], row["name"], row["serverId"]) for row in before
    ]
    assert remote.pushes == []


def test_overlapping_sessions_are_rejected(database, clock) -> None:
    remote = FakeRemote()
    service = _service(remote, clock)
    entered = threading.Event()
    release = threading.Event()
    original = remote.fetch_snapshot

    def slow_snapshot():
        entered.set()
        release.wait(timeout=5)
        return original()

    remote.fetch_snapshot = slow_snapshot
    worker = threading.Thread(target=service.pull)
    worker.start()
    try:
        assert entered.wait(timeout=5)
        assert service.busy
        with pytest.raises(SyncInProgressError):
            service.push()
    finally:
        release.set()
        worker.join(timeout=5)

    assert not service.busy


def test_failed_session_releases_lock_and_propagates(database, clock) -> None:
    remote = FakeRemote()
    remote.online = False
    service = _service(remote, clock)

    with pytest.raises(ConnectivityError):
        service.full_sync()

    assert not service.busy
    assert service.check_connectivity() is False


def test_log_callback_receives_progress_messages(database, clock) -> None:
    messages = []
    remote = FakeRemote({"products": [{"_id": "p1", "name": "Beans"}], "invoices": []})

    _service(remote, clock, messages).full_sync()

    assert messages[0].startswith("Server -> SQLite: 1 products")
    assert messages[-1] == "Sync complete: 1 pulled, 0 pushed"


def test_pending_changes_follows_staleness_window(database, clock) -> None:
    fresh = db.insert_product({"name": "Fresh"})
    db.insert_product({"name": "Never synced"})
    db.execute(
        "UPDATE products SET serverId = 'srv_1', syncedAt = ? WHERE id = ?",
        (db.format_timestamp(clock.now - timedelta(seconds=10)), fresh),
    )
    service = _service(FakeRemote(), clock)

    assert service.pending_changes() == {"products": 1, "invoices": 0}

    clock.advance(minutes=2)

    assert service.pending_changes() == {"products": 2, "invoices": 0}
