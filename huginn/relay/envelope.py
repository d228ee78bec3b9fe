"""
Huginn Relay — Envelope Builder
===============================
Converts validated requests into wire envelopes.

Metadata merge order: caller-supplied metadata first, then the injected
``source`` and ``timestamp`` keys, so injected values win on collision. The
timestamp is taken when the envelope is built, not when the tool was called.
"""

from __future__ import annotations

import itertools
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from .models import (
    AuthorizationRequest,
    Envelope,
    EnvelopeType,
    TaskEvent,
    ToolRequest,
)

Clock = Callable[[], datetime]

_REQUEST_SEQUENCE = itertools.count(1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_request_id(now: Optional[datetime] = None) -> str:
    """Timestamp-based request id, unique within this process."""
    epoch_ms = int((now.timestamp() if now is not None else time.time()) * 1000)
    return f"auth-{epoch_ms}-{next(_REQUEST_SEQUENCE)}"


class EnvelopeBuilder:
    """
    Builds ``task_event``, ``authorization_request`` and
    ``mcp_client_identify`` envelopes.

    Parameters
    ----------
    source_name : str
        Injected as ``payload.metadata.source`` on every request envelope.
    clock : optional callable
        Returns the current aware ``datetime``; defaults to UTC now.
    """

    def __init__(self, source_name: str, clock: Optional[Clock] = None) -> None:
        self.source_name = source_name
        self._clock = clock or utc_now

    def build(self, request: ToolRequest) -> Envelope:
        now = self._clock()
        if isinstance(request, TaskEvent):
            return self._task_event(request, now)
        if isinstance(request, AuthorizationRequest):
            return self._authorization_request(request, now)
        raise TypeError(f"Unsupported request type: {type(request).__name__}")

    def identify(
        self,
        client_id: str,
        version: str,
        capabilities: Iterable[str],
    ) -> Envelope:
        return Envelope(
            type=EnvelopeType.CLIENT_IDENTIFY,
            payload={
                "clientId": client_id,
                "version": version,
                "capabilities": list(capabilities),
                "timestamp": iso_timestamp(self._clock()),
            },
        )

    def _metadata(self, caller_metadata: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        merged = dict(caller_metadata)
        merged["source"] = self.source_name
        merged["timestamp"] = iso_timestamp(now)
        return merged

    def _task_event(self, request: TaskEvent, now: datetime) -> Envelope:
        return Envelope(
            type=EnvelopeType.TASK_EVENT,
            payload={
                "taskId": request.task_id,
                "type": request.type.value,
                "description": request.description,
                "userId": request.user_id,
                "metadata": self._metadata(request.metadata, now),
            },
        )

    def _authorization_request(self, request: AuthorizationRequest, now: datetime) -> Envelope:
        if request.required_by_text is not None:
            required_by = request.required_by_text
        elif request.required_by is not None:
            required_by = iso_timestamp(request.required_by)
        else:
            required_by = iso_timestamp(now + timedelta(seconds=request.timeout_seconds))
        return Envelope(
            type=EnvelopeType.AUTHORIZATION_REQUEST,
            payload={
                "requestId": new_request_id(now),
                "taskId": request.task_id,
                "action": request.action,
                "description": request.description,
                "userId": request.user_id,
                "requiredBy": required_by,
                "metadata": self._metadata(request.metadata, now),
            },
        )
