import pytest
import requests

from core.api_client import SyncApiClient
from core.dto import ProductDTO
from core.errors import ConnectivityError, PayloadError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK", text=None):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self._text = text

    def json(self):
        if self._text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    def __init__(self, responses=None, error=None):
        self.headers = {}
        self.calls = []
        self._responses = list(responses or [])
        self._error = error

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        if self._error is not None:
            raise self._error
        return self._responses.pop(0)

    def close(self):
        pass


def test_fetch_snapshot_uses_sync_all_endpoint() -> None:
    session = FakeSession(
        [FakeResponse(payload={"products": [{"_id": "p1", "name": "Rice"}], "invoices": []})]
    )
    client = SyncApiClient("http://server/api/", timeout=7, session=session)

    snapshot = client.fetch_snapshot()

    assert snapshot.products[0].server_id == "p1"
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"] == "http://server/api/sync/all"
    assert session.calls[0]["timeout"] == 7
    assert session.headers["User-Agent"] == "SalesBook-Sync"


def test_push_changes_posts_body_with_device_id() -> None:
    session = FakeSession(
        [FakeResponse(payload={"products": [{"id": "srv_1", "localId": 1, "name": "Rice"}]})]
    )
    client = SyncApiClient("http://server/api", session=session)

    accepted = client.push_changes([ProductDTO(name="Rice", local_id=1)], [], "device_1")

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "http://server/api/sync/push"
    assert call["json"]["deviceId"] == "device_1"
    assert call["json"]["products"][0]["localId"] == 1
    assert call["json"]["invoices"] == []
    assert (accepted.products[0].server_id, accepted.products[0].local_id) == ("srv_1", 1)


def test_error_status_uses_server_error_message() -> None:
    session = FakeSession([FakeResponse(500, {"error": "database offline"}, reason="Server Error")])
    client = SyncApiClient("http://server/api", session=session)

    with pytest.raises(ConnectivityError) as excinfo:
        client.fetch_snapshot()

    assert str(excinfo.value) == "API error: database offline"
    assert excinfo.value.status_code == 500


def test_error_status_without_body_falls_back_to_reason() -> None:
    session = FakeSession([FakeResponse(404, reason="Not Found", text="<html>")])
    client = SyncApiClient("http://server/api", session=session)

    with pytest.raises(ConnectivityError) as excinfo:
        client.fetch_snapshot()

    assert str(excinfo.value) == "API error: Not Found"
    assert excinfo.value.status_code == 404


def test_transport_failures_become_connectivity_errors() -> None:
    timeout_client = SyncApiClient("http://server/api", session=FakeSession(error=requests.Timeout()))
    refused_client = SyncApiClient(
        "http://server/api", session=FakeSession(error=requests.ConnectionError("refused"))
    )

    with pytest.raises(ConnectivityError, match="timed out"):
        timeout_client.fetch_snapshot()
    with pytest.raises(ConnectivityError, match="Network error"):
        refused_client.fetch_snapshot()


def test_invalid_json_raises_payload_error() -> None:
    session = FakeSession([FakeResponse(text="not json")])
    client = SyncApiClient("http://server/api", session=session)

    with pytest.raises(PayloadError):
        client.fetch_snapshot()


def test_check_connection_reports_health() -> None:
    healthy = SyncApiClient("http://server/api", session=FakeSession([FakeResponse()]))
    failing = SyncApiClient(
        "http://server/api", session=FakeSession(error=requests.ConnectionError("down"))
    )

    assert healthy.check_connection() is True
    assert failing.check_connection() is False


def test_redirect_status_is_an_error() -> None:
    session = FakeSession([FakeResponse(302, reason="Found", text="")])
    client = SyncApiClient("http://server/api", session=session)

    with pytest.raises(ConnectivityError) as excinfo:
        client.fetch_snapshot()

    assert excinfo.value.status_code == 302
