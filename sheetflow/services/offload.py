from __future__ import annotations

import logging
import mimetypes
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import requests

from ..models.config_models import WorkbookConfig
from ..models.field_mapping import PipelineMappings
from ..models.row_data import DataRow, ValidationError

"""Remote offload client for large files.

Files above ``OFFLOAD_THRESHOLD_BYTES`` can be processed by a remote service
instead of the local pipeline. The host registers three handlers:

1. ``get_upload_url(path, context)`` -> {url, method?, fields?, headers?, key?}
2. ``start_processing(path, upload_key, context)`` -> {job_id}
3. ``poll_result(job_id, context)`` -> {done, error?, rows?}

The client uploads the file itself (requests), starts the job and polls with
exponential backoff plus jitter until the job is done or the wall-clock
timeout expires. Rows returned by the remote service are passed through as-is.
"""

__all__ = [
    "OFFLOAD_THRESHOLD_BYTES",
    "OffloadError",
    "OffloadContext",
    "OffloadHandlers",
    "OffloadClient",
    "configure_offload",
    "is_offload_configured",
    "should_offload",
    "offload_and_process",
]

logger = logging.getLogger(__name__)

OFFLOAD_THRESHOLD_BYTES = 10 * 1024 * 1024

POLL_TIMEOUT_SECONDS = 10 * 60
INITIAL_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 10.0
BACKOFF_FACTOR = 1.5
JITTER_RATIO = 0.2
MIN_DELAY_SECONDS = 0.25
UPLOAD_TIMEOUT_SECONDS = 300


class OffloadError(Exception):
    """Remote processing failed, timed out or no handlers are configured."""


@dataclass(frozen=True)
class OffloadContext:
    sheet_slug: str
    pipeline_mappings: PipelineMappings | None = None
    workbook: WorkbookConfig | None = None


class OffloadHandlers(Protocol):
    def get_upload_url(self, path: Path, context: OffloadContext) -> dict[str, Any]: ...

    def start_processing(self, path: Path, upload_key: str | None, context: OffloadContext) -> dict[str, Any]: ...

    def poll_result(self, job_id: str, context: OffloadContext) -> dict[str, Any]: ...


def with_jitter(seconds: float, rng: Callable[[], float] = random.random) -> float:
    """+/-20% jitter with a 250ms floor."""
    jitter = seconds * JITTER_RATIO
    low = max(MIN_DELAY_SECONDS, seconds - jitter)
    high = seconds + jitter
    return low + rng() * (high - low)


def should_offload(size_bytes: int) -> bool:
    return size_bytes > OFFLOAD_THRESHOLD_BYTES


def _to_row(raw: Any) -> DataRow:
    if isinstance(raw, DataRow):
        return raw
    errors = [e if isinstance(e, ValidationError) else ValidationError(**e) for e in raw.get("errors", [])]
    row_id = str(raw["id"])
    index = raw.get("index")
    if index is None:
        suffix = row_id.rsplit("-", 1)[-1]
        index = int(suffix) if suffix.isdigit() else -1
    return DataRow(
        id=row_id,
        index=index,
        data=dict(raw.get("data", {})),
        errors=errors,
        is_valid=bool(raw.get("is_valid", raw.get("isValid", not errors))),
    )


class OffloadClient:
    """Upload / start / poll driver around host-supplied handlers."""

    def __init__(
        self,
        handlers: OffloadHandlers,
        *,
        timeout_seconds: float = POLL_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        session: requests.Session | None = None,
    ) -> None:
        self.handlers = handlers
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self._http = session or requests.Session()

    def upload(self, path: Path, target: dict[str, Any]) -> None:
        url = target["url"]
        method = (target.get("method") or "PUT").upper()
        with path.open("rb") as fh:
            if method == "POST" and target.get("fields"):
                # multipart/form-data (S3 POST 形式)
                res = self._http.post(
                    url,
                    data=dict(target["fields"]),
                    files={"file": (path.name, fh)},
                    timeout=UPLOAD_TIMEOUT_SECONDS,
                )
            else:
                content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
                headers = {"Content-Type": content_type, **(target.get("headers") or {})}
                res = self._http.request(method, url, data=fh, headers=headers, timeout=UPLOAD_TIMEOUT_SECONDS)
        if not res.ok:
            raise OffloadError(f"Upload failed with status {res.status_code}")

    def process(self, path: Path, context: OffloadContext) -> list[DataRow]:
        target = self.handlers.get_upload_url(path, context)
        self.upload(path, target)
        job = self.handlers.start_processing(path, target.get("key"), context)
        job_id = job["job_id"]
        logger.info(f"offload job started: {job_id} ({path.name})")
        return self._poll(job_id, context)

    def _poll(self, job_id: str, context: OffloadContext) -> list[DataRow]:
        started = self._clock()
        wait = INITIAL_DELAY_SECONDS
        attempt = 0
        while True:
            if self._clock() - started > self.timeout_seconds:
                raise OffloadError("Processing timed out")
            try:
                status = self.handlers.poll_result(job_id, context)
            except Exception as e:
                # 一時的な失敗はバックオフして再試行
                logger.debug(f"offload poll {attempt} for {job_id} failed: {e}")
                status = None
            if status and status.get("done"):
                if status.get("error"):
                    raise OffloadError(str(status["error"]))
                return [_to_row(r) for r in status.get("rows") or []]
            self._sleep(with_jitter(wait))
            attempt += 1
            wait = min(MAX_DELAY_SECONDS, wait * BACKOFF_FACTOR)


_client: OffloadClient | None = None


def configure_offload(handlers: OffloadHandlers | None, **kwargs: Any) -> None:
    """Register (or with ``None`` unregister) the host's offload handlers."""
    global _client
    _client = OffloadClient(handlers, **kwargs) if handlers is not None else None


def is_offload_configured() -> bool:
    return _client is not None


def offload_and_process(path: Path, context: OffloadContext) -> list[DataRow]:
    if _client is None:
        raise OffloadError("Offload client is not configured")
    return _client.process(path, context)
