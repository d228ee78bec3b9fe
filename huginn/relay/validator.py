"""
Huginn Relay — Message Validator
================================
Turns untrusted tool arguments into immutable ``TaskEvent`` /
``AuthorizationRequest`` models, or raises ``ValidationError`` with
per-field messages. Validation is a pure function of the input and the
configured default user; the input mapping is never modified.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from huginn.core.errors import ValidationError, field_errors_from_pydantic

from .definitions import REQUEST_AUTHORIZATION, SEND_TASK_EVENT
from .models import (
    AuthorizationInputV1,
    AuthorizationInputV2,
    AuthorizationRequest,
    RequestKind,
    SchemaVersion,
    TaskEvent,
    TaskEventInputV1,
    TaskEventInputV2,
    TaskEventType,
    ToolRequest,
)

logger = logging.getLogger("Huginn.relay.validator")

_V2_EVENT_TYPES = {
    "task_start": TaskEventType.TASK_STARTED,
    "task_complete": TaskEventType.TASK_COMPLETED,
    "task_error": TaskEventType.TASK_FAILED,
}

_TOOL_NAMES = {
    RequestKind.TASK_EVENT: SEND_TASK_EVENT,
    RequestKind.AUTHORIZATION: REQUEST_AUTHORIZATION,
}


def _resolve_user(user_id: Optional[str], default_user_id: str) -> str:
    if user_id and user_id.strip():
        return user_id
    return default_user_id


def _copy_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return copy.deepcopy(dict(metadata)) if metadata else {}


def _parse(model_cls, kind: RequestKind, raw_input: Any):
    if not isinstance(raw_input, Mapping):
        raise ValidationError(_TOOL_NAMES[kind], {"__root__": ["arguments must be an object"]})
    try:
        return model_cls.model_validate(dict(raw_input))
    except PydanticValidationError as exc:
        raise ValidationError(_TOOL_NAMES[kind], field_errors_from_pydantic(exc)) from exc


def _task_event_v1(raw_input: Any, default_user_id: str) -> TaskEvent:
    args = _parse(TaskEventInputV1, RequestKind.TASK_EVENT, raw_input)
    return TaskEvent(
        task_id=args.task_id,
        type=TaskEventType(args.type),
        description=args.description,
        user_id=_resolve_user(args.user_id, default_user_id),
        metadata=_copy_metadata(args.metadata),
    )


def _task_event_v2(raw_input: Any, default_user_id: str) -> TaskEvent:
    args = _parse(TaskEventInputV2, RequestKind.TASK_EVENT, raw_input)
    metadata = _copy_metadata(args.metadata)
    if args.progress is not None:
        metadata["progress"] = args.progress
    return TaskEvent(
        task_id=args.task_id,
        type=_V2_EVENT_TYPES[args.event_type],
        description=args.message,
        user_id=default_user_id,
        metadata=metadata,
    )


def _authorization_v1(raw_input: Any, default_user_id: str) -> AuthorizationRequest:
    args = _parse(AuthorizationInputV1, RequestKind.AUTHORIZATION, raw_input)
    return AuthorizationRequest(
        task_id=args.task_id,
        action=args.action,
        description=args.description,
        user_id=_resolve_user(args.user_id, default_user_id),
        required_by=args.deadline,
        required_by_text=args.required_by,
        metadata=_copy_metadata(args.metadata),
    )


def _authorization_v2(raw_input: Any, default_user_id: str) -> AuthorizationRequest:
    args = _parse(AuthorizationInputV2, RequestKind.AUTHORIZATION, raw_input)
    metadata = _copy_metadata(args.metadata)
    metadata["resource"] = args.resource
    task_id = args.task_id if args.task_id and args.task_id.strip() else args.resource
    return AuthorizationRequest(
        task_id=task_id,
        action=args.action,
        description=args.reason,
        user_id=default_user_id,
        timeout_seconds=args.timeout,
        metadata=metadata,
    )


_VALIDATORS = {
    (RequestKind.TASK_EVENT, SchemaVersion.V1): _task_event_v1,
    (RequestKind.TASK_EVENT, SchemaVersion.V2): _task_event_v2,
    (RequestKind.AUTHORIZATION, SchemaVersion.V1): _authorization_v1,
    (RequestKind.AUTHORIZATION, SchemaVersion.V2): _authorization_v2,
}


def validate(
    kind: RequestKind,
    raw_input: Any,
    *,
    default_user_id: str,
    schema: SchemaVersion = SchemaVersion.V1,
) -> ToolRequest:
    """
    Validate ``raw_input`` as a request of ``kind`` in the given argument shape.

    Raises
    ------
    ValidationError
        When any required field is missing or malformed. Nothing is
        partially accepted.
    """
    validator = _VALIDATORS[(RequestKind(kind), SchemaVersion(schema))]
    request = validator(raw_input, default_user_id)
    logger.debug("Validated %s request for task %s", request.kind.value, request.task_id)
    return request


class MessageValidator:
    """Binds :func:`validate` to a configured default user."""

    def __init__(self, default_user_id: str) -> None:
        self.default_user_id = default_user_id

    def validate(
        self,
        kind: RequestKind,
        raw_input: Any,
        schema: SchemaVersion = SchemaVersion.V1,
    ) -> ToolRequest:
        return validate(kind, raw_input, default_user_id=self.default_user_id, schema=schema)
