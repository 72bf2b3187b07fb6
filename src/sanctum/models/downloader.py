"""Resumable model downloads over HTTP(S).

Bytes land in ``<file>.part``; a later call continues from the partial file
with a ``Range`` request. The file is renamed into place only after its size
(and sha256, when the catalog provides one) checks out.
"""

from __future__ import annotations

import errno
import hashlib
import http.client
import logging
import os
import shutil
import threading
import time
import urllib.error
import urllib.request
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

from sanctum import __version__
from sanctum.errors import ModelDownloadFailed
from sanctum.models.catalog import ModelDescriptor

logger = logging.getLogger(__name__)

_USER_AGENT = f"sanctum/{__version__}"
_TIMEOUT = 30  # seconds per socket operation
_BLOCK_SIZE = 1024 * 1024
_EMIT_INTERVAL = 0.5  # seconds between progress events


@dataclass(frozen=True)
class DownloadProgress:
    model_name: str
    status: str  # downloading | completed | cancelled
    downloaded_bytes: int
    total_bytes: int
    speed_bytes_per_s: float = 0.0

    @property
    def percentage(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(100.0, self.downloaded_bytes * 100.0 / self.total_bytes)


class _TransientError(Exception):
    """Network hiccup worth retrying; the partial file is kept."""


def download(
    descriptor: ModelDescriptor,
    cache_dir: Path,
    *,
    cancel_event: threading.Event | None = None,
    max_retries: int = 3,
    retry_delay: float = 2.0,
    emit_interval: float = _EMIT_INTERVAL,
) -> Iterator[DownloadProgress]:
    """Download *descriptor* into *cache_dir*, yielding progress events.

    The last event has status ``completed`` or ``cancelled``. Cancellation is
    checked between blocks and leaves the partial file in place.

    Raises:
        ModelDownloadFailed: ``retryable=True`` when the network kept failing
            after *max_retries* resumptions; ``retryable=False`` for a full
            disk or a size/checksum mismatch (the partial file is deleted).
    """
    cache_dir = Path(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    final = cache_dir / descriptor.file_name
    part = cache_dir / f"{descriptor.file_name}.part"
    total = descriptor.size_bytes

    if final.exists() and final.stat().st_size == total:
        yield DownloadProgress(descriptor.name, "completed", total, total)
        return

    _check_disk_space(cache_dir, total - _size_of(part))

    attempt = 0
    while True:
        try:
            finished = yield from _transfer(descriptor, part, cancel_event, emit_interval)
        except _TransientError as exc:
            attempt += 1
            if attempt > max_retries:
                raise ModelDownloadFailed(
                    f"Download of '{descriptor.name}' failed: {exc}", retryable=True
                ) from exc
            delay = retry_delay * 2 ** (attempt - 1)
            logger.warning(
                "Download of %s interrupted (%s); resuming in %.1fs (attempt %d/%d)",
                descriptor.name, exc, delay, attempt, max_retries,
            )
            time.sleep(delay)
            continue
        break

    if not finished:
        return

    _verify(descriptor, part)
    os.replace(part, final)
    logger.info("Model %s downloaded to %s", descriptor.name, final)
    yield DownloadProgress(descriptor.name, "completed", total, total)


# ------------------------------------------------------------------
# Transfer
# ------------------------------------------------------------------


def _transfer(
    descriptor: ModelDescriptor,
    part: Path,
    cancel_event: threading.Event | None,
    emit_interval: float,
) -> Iterator[DownloadProgress]:
    """Stream the remaining bytes into *part*. Returns True when all bytes arrived."""
    offset = _size_of(part)
    total = descriptor.size_bytes

    if offset > total:
        _fail_fatal(descriptor, part, f"partial file is larger than {total} bytes")

    headers = {"User-Agent": _USER_AGENT}
    if offset:
        headers["Range"] = f"bytes={offset}-"
    request = urllib.request.Request(descriptor.download_url, headers=headers)

    try:
        response = urllib.request.urlopen(request, timeout=_TIMEOUT)
    except urllib.error.HTTPError as exc:
        if exc.code == 416 and offset == total:
            return True
        if exc.code == 416:
            part.unlink()
            raise _TransientError("server rejected resume offset; restarting") from exc
        if exc.code >= 500 or exc.code == 429:
            raise _TransientError(f"HTTP {exc.code}") from exc
        raise ModelDownloadFailed(
            f"Download of '{descriptor.name}' failed: HTTP {exc.code}", retryable=False,
            suggestion="Check the model URL in the catalog.",
        ) from exc
    except (urllib.error.URLError, OSError) as exc:
        raise _TransientError(str(exc)) from exc

    with response:
        status = getattr(response, "status", 200)
        if offset and status != 206:
            logger.info("Server ignored range request for %s; restarting", descriptor.name)
            offset = 0
        remote_total = _remote_total(response, offset)
        if remote_total is not None and remote_total != total:
            _fail_fatal(
                descriptor, part, f"server reports {remote_total} bytes, catalog expects {total}"
            )

        mode = "ab" if offset else "wb"
        downloaded = offset
        started = time.monotonic()
        last_emit = 0.0
        try:
            with open(part, mode) as fh:
                while True:
                    if cancel_event is not None and cancel_event.is_set():
                        fh.flush()
                        logger.info("Download of %s cancelled at %d bytes", descriptor.name, downloaded)
                        yield DownloadProgress(
                            descriptor.name, "cancelled", downloaded, total,
                            _speed(downloaded - offset, started),
                        )
                        return False
                    try:
                        block = response.read(_BLOCK_SIZE)
                    except (OSError, http.client.HTTPException) as exc:
                        raise _TransientError(str(exc)) from exc
                    if not block:
                        break
                    fh.write(block)
                    downloaded += len(block)
                    if downloaded > total:
                        _fail_fatal(descriptor, part, f"received more than {total} bytes")
                    now = time.monotonic()
                    if now - last_emit >= emit_interval:
                        last_emit = now
                        yield DownloadProgress(
                            descriptor.name, "downloading", downloaded, total,
                            _speed(downloaded - offset, started),
                        )
        except OSError as exc:
            if exc.errno == errno.ENOSPC:
                raise ModelDownloadFailed(
                    f"Disk full while downloading '{descriptor.name}'", retryable=False,
                    suggestion="Free up disk space, then run the download again to resume.",
                ) from exc
            raise

    if downloaded < total:
        raise _TransientError(f"connection closed at {downloaded}/{total} bytes")
    return True


def _remote_total(response: http.client.HTTPResponse, offset: int) -> int | None:
    content_range = response.headers.get("Content-Range")
    if content_range and "/" in content_range:
        tail = content_range.rsplit("/", 1)[1].strip()
        if tail.isdigit():
            return int(tail)
    length = response.headers.get("Content-Length")
    if length and length.isdigit():
        return int(length) + offset
    return None


# ------------------------------------------------------------------
# Checks
# ------------------------------------------------------------------


def _verify(descriptor: ModelDescriptor, part: Path) -> None:
    size = _size_of(part)
    if size != descriptor.size_bytes:
        _fail_fatal(descriptor, part, f"size mismatch ({size} != {descriptor.size_bytes})")
    if descriptor.sha256:
        digest = sha256_file(part)
        if digest.lower() != descriptor.sha256.lower():
            _fail_fatal(descriptor, part, "sha256 checksum mismatch")


def _fail_fatal(descriptor: ModelDescriptor, part: Path, reason: str) -> NoReturn:
    part.unlink(missing_ok=True)
    logger.error("Download of %s failed integrity check: %s", descriptor.name, reason)
    raise ModelDownloadFailed(
        f"Download of '{descriptor.name}' failed: {reason}",
        retryable=False,
        suggestion="The partial file was discarded. Run the download again to start over.",
    )


def _check_disk_space(directory: Path, needed: int) -> None:
    free = shutil.disk_usage(directory).free
    if needed > 0 and free < needed:
        raise ModelDownloadFailed(
            f"Not enough disk space: need {needed} bytes, {free} free",
            retryable=False,
            suggestion="Free up disk space or point models.cache_dir at a larger disk.",
        )


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_BLOCK_SIZE), b""):
            h.update(block)
    return h.hexdigest()


def _size_of(path: Path) -> int:
    return path.stat().st_size if path.exists() else 0


def _speed(nbytes: int, started: float) -> float:
    elapsed = time.monotonic() - started
    return nbytes / elapsed if elapsed > 0 else 0.0
