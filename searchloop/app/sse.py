import json
from typing import Any, Dict

from ..streams import UIEvent, ValueEvent


def format_sse(event: Dict) -> str:
    event_type = event.get("event_type", "message")
    payload = json.dumps(event, ensure_ascii=False, default=str)
    return f"event: {event_type}\ndata: {payload}\n\n"


def stream_event(name: str, event: Any) -> Dict[str, Any]:
    """Flatten one handle event into an SSE payload."""
    if isinstance(event, UIEvent):
        node = event.node.model_dump() if event.node is not None else None
        return {"event_type": name, "op": event.op, "node": node}
    if isinstance(event, ValueEvent):
        return {"event_type": name, "op": event.op, "value": event.value}
    return {"event_type": name, "value": event}
