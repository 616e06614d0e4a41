"""Lifecycle event emitter."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DISCOVERY_START = "discovery:start"
DISCOVERY_ENDPOINT = "discovery:endpoint"
DISCOVERY_COMPLETE = "discovery:complete"
DISCOVERY_ERROR = "discovery:error"
MCP_START = "mcp:start"
MCP_STOP = "mcp:stop"
MCP_ERROR = "mcp:error"
MCP_REQUEST = "mcp:request"
MCP_RESPONSE = "mcp:response"


@dataclass
class BridgeEvent:
    type: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventEmitter:
    """
    Minimal synchronous event emitter.

    Listener failures are logged and never reach the emitting code.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable[[BridgeEvent], None]]] = {}

    def on(self, event_type: str, listener: Callable[[BridgeEvent], None]) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def off(self, event_type: str, listener: Callable[[BridgeEvent], None]) -> bool:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def emit(self, event_type: str, data: Any = None) -> BridgeEvent:
        event = BridgeEvent(type=event_type, data=data)
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in '{event_type}' listener: {e}")
        return event

    def remove_all_listeners(self, event_type: Optional[str] = None) -> None:
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_type, None)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, []))

    def event_names(self) -> List[str]:
        return [name for name, listeners in self._listeners.items() if listeners]
