import time

from core.auto_sync import AutoSyncController
from core.errors import ConnectivityError, LocalStoreError, SyncInProgressError
from core.sync_service import SyncResult


class FakeService:
    def __init__(self, online=True, outcome=None):
        self.online = online
        self.outcome = outcome
        self.calls = 0

    def check_connectivity(self):
        return self.online

    def full_sync(self):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome or SyncResult(pulled=2, pushed=1)


def _controller(service):
    statuses = []
    controller = AutoSyncController(
        service,
        interval_seconds=60,
        status_callback=lambda status, payload: statuses.append((status, payload)),
    )
    return controller, statuses


def test_tick_reports_synced_counts() -> None:
    controller, statuses = _controller(FakeService())

    assert controller.tick() == "synced"
    assert statuses == [("synced", {"pulled": 2, "pushed": 1})]


def test_tick_skips_session_when_offline() -> None:
    service = FakeService(online=False)
    controller, statuses = _controller(service)

    assert controller.tick() == "offline"
    assert service.calls == 0


def test_tick_maps_failures_to_statuses() -> None:
    cases = [
        (SyncInProgressError("running"), "busy"),
        (ConnectivityError("API error: boom", status_code=500), "offline"),
        (LocalStoreError("Failed to pull from server: locked"), "error"),
    ]
    for error, expected in cases:
        controller, statuses = _controller(FakeService(outcome=error))
        assert controller.tick() == expected
        assert statuses[0][0] == expected


def test_start_and_stop_worker_thread() -> None:
    service = FakeService()
    controller, _ = _controller(service)

    controller.start()
    try:
        assert controller.running
    finally:
        controller.stop()

    assert not controller.running


def test_sync_now_wakes_worker_before_interval() -> None:
    service = FakeService()
    controller, statuses = _controller(service)

    controller.start()
    try:
        deadline = time.monotonic() + 5
        while service.calls < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
        controller.sync_now()
        while service.calls < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        controller.stop()

    assert service.calls >= 2
    assert statuses[-1][0] == "synced"
