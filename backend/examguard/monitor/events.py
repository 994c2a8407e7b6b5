"""
Client-side event types for the exam monitor.

Browser signals come in as small DOM-like event objects; each observer turns
at most one of them into a :class:`ViolationEvent` on the session channel.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

import pytz


@dataclass(frozen=True)
class ViolationEvent:
    event_type: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(pytz.UTC))
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "eventType": self.event_type,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


@dataclass
class DomEvent:
    default_prevented: bool = False

    def prevent_default(self):
        self.default_prevented = True


@dataclass
class KeyEvent(DomEvent):
    key: str = ""
    ctrl: bool = False
    shift: bool = False
    alt: bool = False


@dataclass
class ContextMenuEvent(DomEvent):
    x: int = 0
    y: int = 0


@dataclass(frozen=True)
class MonitorPolicy:
    proctoring_enabled: bool = True
    allow_tab_switch: bool = False
    max_tab_switches: int = 0
    full_screen_required: bool = True

    @classmethod
    def from_exam(cls, exam: Dict[str, Any]) -> "MonitorPolicy":
        """Build from the camelCase exam payload returned by the exam API."""
        return cls(
            proctoring_enabled=bool(exam.get("proctoringEnabled", True)),
            allow_tab_switch=bool(exam.get("allowTabSwitch", False)),
            max_tab_switches=int(exam.get("maxTabSwitches") or 0),
            full_screen_required=bool(exam.get("fullScreenRequired", True)),
        )
