import pytest

from wayback_mirror.archive import ArchiveClient, ArchiveResponse, decode_body, make_session, wayback_url
from wayback_mirror.cdx import CDX, CaptureIndex, parse_cdx_rows
from wayback_mirror.config import MirrorConfig
from wayback_mirror.errors import FetchError
from wayback_mirror.models import CaptureRef

from .conftest import TS, FakeResponse, FakeSession

PAGE = "http://example.com/"
OK = FakeResponse(200, b"<html></html>", "text/html")


# ---------------------------------------------------------------------------
# Retry / backoff
# ---------------------------------------------------------------------------
class TestRetryPolicy:
    def test_rate_limited_twice_then_ok(self, client, session, sleeps):
        url = wayback_url(TS, PAGE)
        session.add(url, FakeResponse(429), FakeResponse(429), OK)
        resp = client.fetch(TS, PAGE)
        assert resp.content == b"<html></html>"
        assert sleeps == [2.0, 4.0]
        assert session.fetched(PAGE) == 3

    def test_rate_limit_uses_backoff_unit(self, config, session, sleeps):
        config.backoff_unit = 2.0
        client = ArchiveClient(config, session=session, sleep=sleeps.append)
        session.add(wayback_url(TS, PAGE), FakeResponse(429), FakeResponse(429), OK)
        client.fetch(TS, PAGE)
        assert sleeps == [4.0, 8.0]

    def test_rate_limited_until_ceiling(self, client, session, sleeps):
        session.add(wayback_url(TS, PAGE), FakeResponse(429))
        with pytest.raises(FetchError) as exc_info:
            client.fetch(TS, PAGE)
        assert exc_info.value.status_code == 429
        # no wait after the last attempt
        assert sleeps == [2.0, 4.0]

    def test_server_error_then_ok(self, client, session, sleeps):
        session.add(wayback_url(TS, PAGE), FakeResponse(503), OK)
        assert client.fetch(TS, PAGE).status_code == 200
        assert sleeps == [1.0]

    def test_server_error_until_ceiling(self, client, session, sleeps):
        session.add(wayback_url(TS, PAGE), FakeResponse(503))
        with pytest.raises(FetchError) as exc_info:
            client.fetch(TS, PAGE)
        assert exc_info.value.status_code == 503
        assert sleeps == [1.0, 2.0]
        assert session.fetched(PAGE) == 3

    def test_timeouts_become_fetch_error(self, client, session, sleeps, timeout_error):
        session.add(wayback_url(TS, PAGE), timeout_error)
        with pytest.raises(FetchError, match="timeout"):
            client.fetch(TS, PAGE)
        assert sleeps == [1.0, 2.0]

    def test_timeout_then_ok(self, client, session, sleeps, timeout_error):
        session.add(wayback_url(TS, PAGE), timeout_error, OK)
        assert client.fetch(TS, PAGE).is_html
        assert sleeps == [1.0]

    def test_not_found_fails_immediately(self, client, session, sleeps):
        with pytest.raises(FetchError) as exc_info:
            client.fetch(TS, PAGE)
        assert exc_info.value.status_code == 404
        assert sleeps == []
        assert session.fetched(PAGE) == 1

    def test_backoff_hook_sees_each_wait(self, client, session):
        session.add(wayback_url(TS, PAGE), FakeResponse(500), OK)
        seen = []
        client.fetch(TS, PAGE, on_backoff=lambda reason, secs: seen.append(secs))
        assert seen == [1.0]

    def test_single_attempt(self, tmp_path, session, sleeps):
        config = MirrorConfig(output_root=tmp_path, request_delay=0, max_retries=1)
        client = ArchiveClient(config, session=session, sleep=sleeps.append)
        session.add(wayback_url(TS, PAGE), FakeResponse(502))
        with pytest.raises(FetchError):
            client.fetch(TS, PAGE)
        assert sleeps == []


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
def test_wayback_url_modes():
    assert wayback_url(TS, PAGE) == f"https://web.archive.org/web/{TS}id_/{PAGE}"
    assert wayback_url(TS, PAGE, raw=False) == f"https://web.archive.org/web/{TS}if_/{PAGE}"


def test_fetch_keeps_original_url_and_content_type(client, session):
    session.archive("http://example.com/a.css", "body{}", "text/css; charset=utf-8")
    resp = client.fetch(TS, "http://example.com/a.css")
    assert resp.url == "http://example.com/a.css"
    assert resp.is_css("http://example.com/a.css")
    assert not resp.is_html


def test_html_sniffed_without_content_type():
    resp = ArchiveResponse(PAGE, b"  <!DOCTYPE html><html></html>")
    assert resp.is_html


def test_css_recognized_by_extension():
    resp = ArchiveResponse(PAGE, b"body{}", "application/octet-stream")
    assert resp.is_css("http://example.com/s.css?v=1")
    assert not resp.is_css("http://example.com/s.png")


def test_decode_body_falls_back_to_latin1():
    assert decode_body("café".encode("utf-8")) == "café"
    assert decode_body(b"caf\xe9") == "café"


# ---------------------------------------------------------------------------
# Capture index
# ---------------------------------------------------------------------------
ROWS = [
    ["20190101000000", "http://example.com/", "text/html", "200", "100"],
    ["20200101000000", "http://example.com/", "text/html", "200", "120"],
]


def test_parse_cdx_rows():
    assert parse_cdx_rows("") == []
    assert parse_cdx_rows("not json") == []
    assert parse_cdx_rows('[["timestamp"]]') == []
    assert parse_cdx_rows('[["timestamp","original"],["2020","http://a/"]]') == [
        {"timestamp": "2020", "original": "http://a/"}
    ]


def test_latest_capture(client, session):
    session.cdx(ROWS)
    index = CaptureIndex(client)
    assert index.latest("example.com") == CaptureRef("http://example.com/", "20200101000000")
    url, params = session.calls[-1]
    assert url == CDX
    assert params["url"] == "http://example.com"
    assert params["output"] == "json"
    assert params["filter"] == "statuscode:200"
    assert params["limit"] == "-1"


def test_latest_without_captures(client, session):
    session.cdx([])
    assert CaptureIndex(client).latest("http://example.com/nothing") is None


def test_closest_capture(client, session):
    session.cdx(ROWS[:1])
    ref = CaptureIndex(client).closest("http://example.com/", "2019")
    assert ref.timestamp == "20190101000000"
    params = session.calls[-1][1]
    assert params["from"] == params["to"] == "2019"


def test_scan_domain(client, session):
    session.cdx(ROWS + [["20200202000000", "http://example.com/a.css", "text/css", "200", "10"]])
    captures = CaptureIndex(client).scan_domain("https://example.com/blog/", from_ts="2019", limit=10)
    assert [c.original_url for c in captures][-1] == "http://example.com/a.css"
    assert captures[-1].mimetype == "text/css"
    params = session.calls[-1][1]
    assert params["url"] == "example.com/*"
    assert params["collapse"] == "urlkey"
    assert params["limit"] == "10"
    assert params["from"] == "2019"
    assert "to" not in params


def test_index_propagates_fetch_errors(config, sleeps):
    session = FakeSession()
    session.add(CDX, FakeResponse(503))
    client = ArchiveClient(config, session=session, sleep=sleeps.append)
    with pytest.raises(FetchError):
        CaptureIndex(client).scan_domain("example.com")


# ---------------------------------------------------------------------------
# Pacing and transport
# ---------------------------------------------------------------------------
def test_pacing_uses_injected_sleep(tmp_path, session, sleeps):
    config = MirrorConfig(output_root=tmp_path, request_delay=0.5)
    client = ArchiveClient(config, session=session, sleep=sleeps.append)
    session.archive(PAGE, "<p>hi</p>")
    client.fetch(TS, PAGE)
    client.fetch(TS, PAGE)
    assert len(sleeps) == 1
    assert 0.4 < sleeps[0] <= 0.5


def test_zero_delay_disables_pacing(client):
    assert client.limiter is None


def test_session_leaves_retries_to_the_client():
    retry = make_session("test-agent").get_adapter("https://web.archive.org/").max_retries
    assert retry.connect == 0
    assert retry.read is False
    assert retry.status == 0
    assert retry.redirect == 5
