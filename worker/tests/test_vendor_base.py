import pytest
import requests

from grubstars.vendors.base import (
    AdapterAPIError,
    AdapterConfigurationError,
    AdapterRateLimitError,
    ProviderAdapter,
)


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class DummySession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, headers, timeout))
        if self.error:
            raise self.error
        return self.response


class DummyCounter:
    def __init__(self, count=0):
        self.count = count
        self.increments = []

    def get_count(self, adapter):
        return self.count

    def increment(self, adapter, amount=1):
        self.increments.append(adapter)
        self.count += amount
        return self.count


class MeteredAdapter(ProviderAdapter):
    source_name = "metered"
    REQUEST_LIMIT = 10


def make_adapter(session, counter=None, api_key="key", cls=MeteredAdapter):
    return cls(api_key, "https://api.example/v1/", session=session, request_counter=counter or DummyCounter(), timeout=3)


def test_get_returns_json_and_counts_request():
    session = DummySession(DummyResponse(payload={"ok": True}))
    counter = DummyCounter(count=4)
    adapter = make_adapter(session, counter)

    assert adapter._get("/search", params={"q": "pizza"}) == {"ok": True}
    assert session.calls == [("https://api.example/v1/search", {"q": "pizza"}, None, 3)]
    assert counter.increments == ["metered"]
    assert adapter.remaining_requests() == 5


def test_usage_reports_quota():
    adapter = make_adapter(DummySession(), DummyCounter(count=4))

    assert adapter.usage() == {
        "name": "metered",
        "configured": True,
        "request_count": 4,
        "request_limit": 10,
        "remaining": 6,
        "usage_percent": 40.0,
    }


def test_get_refuses_when_quota_spent():
    session = DummySession(DummyResponse(payload={}))
    adapter = make_adapter(session, DummyCounter(count=10))

    with pytest.raises(AdapterRateLimitError) as excinfo:
        adapter._get("search")

    assert session.calls == []
    assert excinfo.value.limit == 10
    assert "10/10" in str(excinfo.value)


def test_unmetered_adapter_skips_counter():
    class Unmetered(ProviderAdapter):
        source_name = "free"

    counter = DummyCounter()
    adapter = make_adapter(DummySession(DummyResponse(payload=[])), counter, cls=Unmetered)

    assert adapter._get("search") == []
    assert counter.increments == []
    assert adapter.remaining_requests() is None


def test_get_requires_api_key():
    adapter = make_adapter(DummySession(DummyResponse(payload={})), api_key="")
    assert adapter.is_configured() is False
    with pytest.raises(AdapterConfigurationError):
        adapter._get("search")


def test_http_error_raises_api_error():
    response = DummyResponse(status_code=401, payload={"error": {"description": "Invalid token"}})
    adapter = make_adapter(DummySession(response))

    with pytest.raises(AdapterAPIError) as excinfo:
        adapter._get("search")

    assert excinfo.value.status == 401
    assert "Invalid token" in str(excinfo.value)


def test_non_json_error_body():
    adapter = make_adapter(DummySession(DummyResponse(status_code=502, text="Bad Gateway")))

    with pytest.raises(AdapterAPIError) as excinfo:
        adapter._get("search")
    assert excinfo.value.body == "Bad Gateway"


def test_success_with_html_body_raises_api_error():
    adapter = make_adapter(DummySession(DummyResponse(status_code=200, text="<html>maintenance</html>")))

    with pytest.raises(AdapterAPIError) as excinfo:
        adapter._get("search")
    assert excinfo.value.status == 200
    assert excinfo.value.body == "<html>maintenance</html>"


def test_success_with_scalar_json_raises_api_error():
    adapter = make_adapter(DummySession(DummyResponse(status_code=200, payload="ok", text='"ok"')))

    with pytest.raises(AdapterAPIError):
        adapter._get("search")


def test_network_failure_wrapped():
    adapter = make_adapter(DummySession(error=requests.ConnectionError("refused")))

    with pytest.raises(AdapterAPIError) as excinfo:
        adapter._get("search")
    assert excinfo.value.status is None


def test_strip_prefix():
    adapter = make_adapter(DummySession())
    assert adapter.strip_prefix("metered:abc") == "abc"
    assert adapter.strip_prefix("abc") == "abc"
