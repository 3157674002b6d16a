import json

import pytest
import requests

from wayback_mirror.archive import ArchiveClient, wayback_url
from wayback_mirror.cdx import CDX
from wayback_mirror.config import MirrorConfig
from wayback_mirror.engine import MirrorEngine

TS = "20200101000000"


class FakeResponse:
    def __init__(self, status_code=200, content=b"", content_type=""):
        self.status_code = status_code
        self.content = content
        self.headers = {"Content-Type": content_type} if content_type else {}

    @property
    def text(self):
        return self.content.decode("utf-8")


class FakeSession:
    """Serves canned responses by URL; the last outcome queued for a URL repeats."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, url, *outcomes):
        self.routes.setdefault(url, []).extend(outcomes)

    def archive(self, original, body, content_type="text/html", ts=TS):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.add(wayback_url(ts, original), FakeResponse(200, body, content_type))

    def cdx(self, rows):
        header = ["timestamp", "original", "mimetype", "statuscode", "length"]
        body = json.dumps([header] + rows) if rows else ""
        self.add(CDX, FakeResponse(200, body.encode("utf-8"), "application/json"))

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params))
        queue = self.routes.get(url)
        if not queue:
            return FakeResponse(404, b"not archived", "text/plain")
        outcome = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def fetched(self, original, ts=TS):
        target = wayback_url(ts, original)
        return sum(1 for url, _ in self.calls if url == target)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def config(tmp_path):
    return MirrorConfig(output_root=tmp_path / "downloads", request_delay=0, backoff_unit=1.0, timeout=5)


@pytest.fixture
def client(config, session, sleeps):
    return ArchiveClient(config, session=session, sleep=sleeps.append)


@pytest.fixture
def engine(config, client):
    return MirrorEngine(config, client=client)


@pytest.fixture
def timeout_error():
    return requests.exceptions.ReadTimeout("read timed out")
