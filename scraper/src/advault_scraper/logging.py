"""Structured logging helpers shared by the pipeline entrypoints.

Every record is a single JSON object emitted through the standard ``logging``
module under the ``advault`` logger. Fields come from three layers, later
layers winning: the process-wide global context, the nested
``logging_context`` blocks active in the current task, and the call site.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator

UTC = getattr(datetime, "UTC", timezone.utc)
_LOGGER_NAME = "advault"
_configured = False
_base_context: dict[str, Any] = {}
_scoped_context: ContextVar[tuple[dict[str, Any], ...]] = ContextVar("advault_log_context", default=())


def configure_logging(level: int = logging.INFO) -> None:
    """Configure the global logging formatter once."""

    global _configured
    if _configured:
        return
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")
    _configured = True


def set_global_context(**fields: Any) -> None:
    """Add persistent context fields that appear on every structured log."""

    _base_context.update({k: v for k, v in fields.items() if v is not None})


@contextmanager
def logging_context(**fields: Any) -> Iterator[None]:
    """Push a temporary logging context for the duration of the ``with`` block.

    The stack lives in a context variable, so concurrent asyncio tasks each
    see only the blocks they entered themselves.
    """

    ctx = {k: v for k, v in fields.items() if v is not None}
    token = _scoped_context.set(_scoped_context.get() + (ctx,))
    try:
        yield
    finally:
        _scoped_context.reset(token)


def _merged_context() -> dict[str, Any]:
    merged: dict[str, Any] = {}
    merged.update(_base_context)
    for ctx in _scoped_context.get():
        merged.update(ctx)
    return merged


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def jlog(level: str, /, **fields: Any) -> None:
    """Emit a structured JSON log payload under the ``advault`` logger."""

    log = logging.getLogger(_LOGGER_NAME)
    record = {"ts": _utcnow_iso(), **_merged_context(), **fields}
    getattr(log, level.lower())(json.dumps(record, ensure_ascii=False, sort_keys=True, default=str))


def joblog(event: str, *, job_id: str, level: str = "info", **kw: Any) -> None:
    """Shortcut for job-scoped JSON logging records."""

    jlog(level, event=event, job_id=job_id, **kw)


def adlog(event: str, *, ad_id: str, serp_id: str, url: str | None, level: str = "info", **kw: Any) -> None:
    """Shortcut for ad-scoped JSON logging records."""

    jlog(level, event=event, ad_id=ad_id, serp_id=serp_id, url=url, **kw)


__all__ = ["adlog", "configure_logging", "jlog", "joblog", "logging_context", "set_global_context"]
