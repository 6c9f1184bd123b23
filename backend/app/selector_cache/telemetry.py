"""
Telemetry sinks for the selector cache

The cache only ever calls emit() and never looks at the outcome.
Transport is someone else's problem; these sinks cover local use.
"""

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Anything with a fire-and-forget emit()"""

    def emit(self, event: Dict[str, Any]) -> None:
        ...


class NullTelemetrySink:
    """Discards every event"""

    def emit(self, event: Dict[str, Any]) -> None:
        return None


class LoggingTelemetrySink:
    """Writes events to the module logger at DEBUG level"""

    def emit(self, event: Dict[str, Any]) -> None:
        logger.debug(f"[TELEMETRY] {event}")


class JsonlTelemetrySink:
    """
    Appends one JSON object per line to a file.

    Each event gets an eventId and an ISO timestamp, matching the
    agent-events.jsonl format used by the agent runtime.
    """

    def __init__(self, path: str, name: str = "SelectorCache"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.name = name
        self._lock = threading.Lock()

    def emit(self, event: Dict[str, Any]) -> None:
        record = {
            "eventId": str(uuid.uuid4()),
            "ts": datetime.now(timezone.utc).isoformat(),
            "name": self.name,
            "data": event,
        }
        line = json.dumps(record, default=str)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")


def safe_emit(sink: TelemetrySink, event: Dict[str, Any]) -> None:
    """Emit without letting a broken sink affect the caller"""
    try:
        sink.emit(event)
    except Exception as e:
        logger.debug(f"[TELEMETRY] Sink failed, event dropped: {e}")
