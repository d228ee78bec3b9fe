from typing import Any, Dict, List

from .models import RequestKind, SchemaVersion

JSON_SCHEMA_2020_12 = "https://json-schema.org/draft/2020-12/schema"

SEND_TASK_EVENT = "send_task_event"
REQUEST_AUTHORIZATION = "request_authorization"

TOOL_KINDS: Dict[str, RequestKind] = {
    SEND_TASK_EVENT: RequestKind.TASK_EVENT,
    REQUEST_AUTHORIZATION: RequestKind.AUTHORIZATION,
}

TOOLS_SCHEMAS_V1: List[Dict[str, Any]] = [
    {
        "name": SEND_TASK_EVENT,
        "description": "Send a task lifecycle event to the monitor.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "taskId": {"type": "string", "description": "Unique task identifier."},
                "type": {
                    "type": "string",
                    "enum": ["task_completed", "task_started", "task_failed"],
                    "description": "Task event type."
                },
                "description": {"type": "string", "description": "Human-readable description of the event."},
                "userId": {"type": "string", "description": "User identifier. Defaults to the relay's configured user."},
                "metadata": {"type": "object", "description": "Additional metadata forwarded with the event."}
            },
            "required": ["taskId", "type", "description"]
        }
    },
    {
        "name": REQUEST_AUTHORIZATION,
        "description": "Ask the monitor's operator to authorize an action.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "taskId": {"type": "string", "description": "Task that needs the authorization."},
                "action": {"type": "string", "description": "Action that requires authorization."},
                "description": {"type": "string", "description": "Description of the action."},
                "userId": {"type": "string", "description": "User identifier. Defaults to the relay's configured user."},
                "requiredBy": {"type": "string", "format": "date-time", "description": "Deadline as an ISO-8601 datetime with timezone."},
                "metadata": {"type": "object", "description": "Additional metadata forwarded with the request."}
            },
            "required": ["taskId", "action", "description", "requiredBy"]
        }
    },
]

TOOLS_SCHEMAS_V2: List[Dict[str, Any]] = [
    {
        "name": SEND_TASK_EVENT,
        "description": "Send a task event to the IDE monitor.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "event_type": {
                    "type": "string",
                    "enum": ["task_start", "task_complete", "task_error"],
                    "description": "Event type (task_start, task_complete, task_error). Report progress with the progress field."
                },
                "task_id": {"type": "string", "description": "Unique task identifier."},
                "message": {"type": "string", "description": "Descriptive message for the event."},
                "progress": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 100,
                    "description": "Task progress (0-100)."
                },
                "metadata": {"type": "object", "description": "Additional event metadata."}
            },
            "required": ["event_type", "task_id", "message"]
        }
    },
    {
        "name": REQUEST_AUTHORIZATION,
        "description": "Request user authorization for a specific action.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {"type": "string", "description": "Action that requires authorization."},
                "resource": {"type": "string", "description": "Resource being accessed."},
                "reason": {"type": "string", "description": "Why the authorization is needed."},
                "timeout": {
                    "type": "number",
                    "default": 30,
                    "description": "Seconds the operator has to answer."
                },
                "task_id": {"type": "string", "description": "Related task identifier. Defaults to the resource."},
                "metadata": {"type": "object", "description": "Additional request metadata."}
            },
            "required": ["action", "resource", "reason"]
        }
    },
]

_SCHEMAS_BY_VERSION = {
    SchemaVersion.V1: TOOLS_SCHEMAS_V1,
    SchemaVersion.V2: TOOLS_SCHEMAS_V2,
}


def tool_definitions(schema: SchemaVersion = SchemaVersion.V1) -> List[Dict[str, Any]]:
    """Tool list for ``tools/list``, with the JSON Schema dialect stamped on each input schema."""
    tools = []
    for schema_def in _SCHEMAS_BY_VERSION[SchemaVersion(schema)]:
        input_schema = dict(schema_def["inputSchema"])
        input_schema.setdefault("$schema", JSON_SCHEMA_2020_12)
        tools.append({
            "name": schema_def["name"],
            "description": schema_def["description"],
            "inputSchema": input_schema,
        })
    return tools
