"""Tests for resumable model downloads (network mocked)."""

from __future__ import annotations

import hashlib
import io
import threading
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from sanctum.errors import ModelDownloadFailed
from sanctum.models.catalog import ModelDescriptor
from sanctum.models.downloader import download

PAYLOAD = bytes(range(256)) * 4  # 1024 bytes
URLOPEN = "sanctum.models.downloader.urllib.request.urlopen"


class FakeResponse(io.BytesIO):
    """HTTP response serving *data* in small pieces, optionally dropping mid-stream."""

    def __init__(self, data, *, status=200, headers=None, piece=128, fail_after=None):
        super().__init__(data)
        self.status = status
        self.headers = headers if headers is not None else {"Content-Length": str(len(data))}
        self._piece = piece
        self._fail_after = fail_after

    def read(self, size=-1):
        if self._fail_after is not None and self.tell() >= self._fail_after:
            raise ConnectionResetError("connection reset by peer")
        return super().read(min(size, self._piece))


def _descriptor(**overrides):
    fields = dict(
        name="tiny",
        file_name="tiny.gguf",
        download_url="https://example.test/tiny.gguf",
        size_bytes=len(PAYLOAD),
        min_ram_bytes=1,
        quality_tier=1,
    )
    fields.update(overrides)
    return ModelDescriptor(**fields)


def _run(descriptor, cache_dir, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("emit_interval", 0)
    return list(download(descriptor, cache_dir, **kwargs))


def test_fresh_download(tmp_path):
    with patch(URLOPEN, return_value=FakeResponse(PAYLOAD)) as urlopen:
        events = _run(_descriptor(), tmp_path)
    assert (tmp_path / "tiny.gguf").read_bytes() == PAYLOAD
    assert not (tmp_path / "tiny.gguf.part").exists()
    assert events[-1].status == "completed"
    assert events[-1].percentage == 100.0
    downloaded = [e.downloaded_bytes for e in events if e.status == "downloading"]
    assert downloaded == sorted(downloaded)
    assert urlopen.call_args.args[0].get_header("Range") is None


def test_already_present_skips_network(tmp_path):
    (tmp_path / "tiny.gguf").write_bytes(PAYLOAD)
    with patch(URLOPEN) as urlopen:
        events = _run(_descriptor(), tmp_path)
    urlopen.assert_not_called()
    assert [e.status for e in events] == ["completed"]


def test_interrupted_transfer_resumes_with_range(tmp_path):
    requests = []
    responses = [
        FakeResponse(PAYLOAD, fail_after=512),
        FakeResponse(
            PAYLOAD[512:],
            status=206,
            headers={"Content-Range": f"bytes 512-1023/{len(PAYLOAD)}"},
        ),
    ]

    def fake_urlopen(request, timeout):
        requests.append(request)
        return responses.pop(0)

    with patch(URLOPEN, side_effect=fake_urlopen):
        events = _run(_descriptor(), tmp_path)

    assert requests[1].get_header("Range") == "bytes=512-"
    assert (tmp_path / "tiny.gguf").read_bytes() == PAYLOAD
    assert events[-1].status == "completed"


def test_cancel_keeps_partial_then_resume(tmp_path):
    cancel = threading.Event()
    with patch(URLOPEN, return_value=FakeResponse(PAYLOAD)):
        events = []
        for event in download(_descriptor(), tmp_path, cancel_event=cancel, emit_interval=0):
            events.append(event)
            cancel.set()
    assert events[-1].status == "cancelled"
    part = tmp_path / "tiny.gguf.part"
    assert part.read_bytes() == PAYLOAD[:128]

    rest = FakeResponse(
        PAYLOAD[128:], status=206, headers={"Content-Length": str(len(PAYLOAD) - 128)}
    )
    with patch(URLOPEN, return_value=rest):
        events = _run(_descriptor(), tmp_path)
    assert events[-1].status == "completed"
    assert (tmp_path / "tiny.gguf").read_bytes() == PAYLOAD


def test_server_ignoring_range_restarts(tmp_path):
    (tmp_path / "tiny.gguf.part").write_bytes(b"\xff" * 100)
    with patch(URLOPEN, return_value=FakeResponse(PAYLOAD, status=200)):
        _run(_descriptor(), tmp_path)
    assert (tmp_path / "tiny.gguf").read_bytes() == PAYLOAD


def test_checksum_verified(tmp_path):
    good = _descriptor(sha256=hashlib.sha256(PAYLOAD).hexdigest().upper())
    with patch(URLOPEN, return_value=FakeResponse(PAYLOAD)):
        assert _run(good, tmp_path)[-1].status == "completed"


def test_checksum_mismatch_discards_partial(tmp_path):
    bad = _descriptor(sha256="0" * 64)
    with patch(URLOPEN, return_value=FakeResponse(PAYLOAD)):
        with pytest.raises(ModelDownloadFailed, match="checksum") as excinfo:
            _run(bad, tmp_path)
    assert excinfo.value.retryable is False
    assert not (tmp_path / "tiny.gguf.part").exists()
    assert not (tmp_path / "tiny.gguf").exists()


def test_size_mismatch_reported_by_server(tmp_path):
    response = FakeResponse(PAYLOAD, headers={"Content-Length": "99"})
    with patch(URLOPEN, return_value=response):
        with pytest.raises(ModelDownloadFailed, match="catalog expects"):
            _run(_descriptor(), tmp_path)


def test_network_failure_after_retries_is_retryable(tmp_path):
    with patch(URLOPEN, side_effect=urllib.error.URLError("no route to host")) as urlopen:
        with pytest.raises(ModelDownloadFailed) as excinfo:
            _run(_descriptor(), tmp_path, max_retries=2)
    assert excinfo.value.retryable is True
    assert urlopen.call_count == 3


def test_http_404_is_not_retried(tmp_path):
    error = urllib.error.HTTPError("https://example.test/tiny.gguf", 404, "Not Found", {}, None)
    with patch(URLOPEN, side_effect=error) as urlopen:
        with pytest.raises(ModelDownloadFailed, match="HTTP 404") as excinfo:
            _run(_descriptor(), tmp_path)
    assert excinfo.value.retryable is False
    assert urlopen.call_count == 1


def test_not_enough_disk(tmp_path):
    with patch("sanctum.models.downloader.shutil.disk_usage", return_value=MagicMock(free=10)):
        with pytest.raises(ModelDownloadFailed, match="Not enough disk space"):
            _run(_descriptor(), tmp_path)
