from pathlib import Path

import pytest

from wayback_mirror import cli
from wayback_mirror.errors import FetchError
from wayback_mirror.models import Capture, ErrorRecord, JobSnapshot, JobStatus


def test_parse_command(capsys):
    code = cli.main(["parse", "https://web.archive.org/web/20200101000000/https://example.com/blog/"])
    out = capsys.readouterr().out
    assert code == 0
    assert "timestamp: 20200101000000" in out
    assert "original:  https://example.com/blog/" in out
    assert "domain:    example.com" in out


def test_parse_rejects_plain_url(capsys):
    assert cli.main(["parse", "https://example.com/"]) == 1
    assert "Not an archive URL" in capsys.readouterr().out


def test_download_defaults():
    args = cli.parse_args(["download", "http://example.com/"])
    assert args.urls == ["http://example.com/"]
    assert args.output == Path("downloads")
    assert args.timestamp is None
    config = cli._config(args)
    assert (config.timeout, config.max_retries, config.request_delay) == (30.0, 3, 0.2)


def test_command_is_required():
    with pytest.raises(SystemExit):
        cli.parse_args([])


class FakeIndex:
    def __init__(self, client, fail=False):
        self.fail = fail

    def scan_domain(self, url, from_ts=None, to_ts=None, limit=500):
        FakeIndex.called_with = (url, from_ts, to_ts, limit)
        if self.fail:
            raise FetchError(url, "HTTP 503", status_code=503)
        return [Capture("20200101000000", "http://example.com/a.css", "text/css", "200", "10")]


def test_scan_command(monkeypatch, capsys):
    monkeypatch.setattr(cli, "CaptureIndex", FakeIndex)
    code = cli.main(["scan", "https://web.archive.org/web/2020/http://example.com/x", "--limit", "5"])
    assert code == 0
    assert FakeIndex.called_with == ("http://example.com/x", None, None, 5)
    assert "http://example.com/a.css" in capsys.readouterr().out


def test_scan_command_failure(monkeypatch):
    monkeypatch.setattr(cli, "CaptureIndex", lambda client: FakeIndex(client, fail=True))
    assert cli.main(["scan", "example.com"]) == 2


class FakeEngine:
    result = None

    def __init__(self, config):
        FakeEngine.config = config
        self.listeners = []

    def subscribe(self, listener):
        self.listeners.append(listener)

    def run(self, urls, timestamp=None):
        FakeEngine.run_with = (urls, timestamp)
        for listener in self.listeners:
            listener(self.result)
        return self.result

    def cancel(self):
        pass


@pytest.mark.parametrize("status, code", [(JobStatus.DONE, 0), (JobStatus.CANCELLED, 1)])
def test_download_exit_codes(monkeypatch, tmp_path, status, code):
    FakeEngine.result = JobSnapshot(
        status=status,
        total=2,
        done=2,
        errors=(ErrorRecord("http://example.com/x.png", "HTTP 404"),),
        domain="example.com",
        output_dir=tmp_path / "example.com",
    )
    monkeypatch.setattr(cli, "MirrorEngine", FakeEngine)
    argv = ["download", "http://example.com/", "--output", str(tmp_path), "--timestamp", "2020", "--delay", "0"]
    assert cli.main(argv) == code
    assert FakeEngine.run_with == (["http://example.com/"], "2020")
    assert FakeEngine.config.output_root == tmp_path
    assert FakeEngine.config.request_delay == 0
