"""
Per-exam client state.

One :class:`ExamSession` is created when a student starts an exam and closed
when the exam ends; detector and reporter both receive it explicitly.
"""
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .events import MonitorPolicy, ViolationEvent

logger = logging.getLogger(__name__)

WARNING_TTL_SECONDS = 5.0


@dataclass(frozen=True)
class Notice:
    text: str
    expires_at: float


class ExamSession:
    def __init__(self, exam_id: int, attempt_id: str, policy: MonitorPolicy,
                 clock: Callable[[], float] = time.monotonic,
                 warning_ttl: float = WARNING_TTL_SECONDS):
        self.exam_id = exam_id
        self.attempt_id = attempt_id
        self.policy = policy
        self.clock = clock
        self.warning_ttl = warning_ttl

        self.channel: "queue.Queue[ViolationEvent]" = queue.Queue()
        self.tab_switch_count = 0
        self.violations: List[ViolationEvent] = []
        self.active = False
        self.terminated = False

        self._notices: List[Notice] = []
        self._lock = threading.Lock()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def monitoring(self) -> bool:
        return self.active and self.policy.proctoring_enabled

    def open(self):
        self.active = True
        logger.info(f"Exam session opened for attempt {self.attempt_id}")

    def close(self, terminated: bool = False):
        self.terminated = self.terminated or terminated
        if not self.active:
            return
        self.active = False
        logger.info(f"Exam session closed for attempt {self.attempt_id} (terminated={self.terminated})")

    def emit(self, event: ViolationEvent) -> bool:
        if not self.monitoring:
            return False
        with self._lock:
            self.violations.append(event)
        self.channel.put(event)
        return True

    def warn(self, text: str):
        with self._lock:
            self._notices.append(Notice(text, self.clock() + self.warning_ttl))

    def warnings(self) -> List[str]:
        """Notices still on screen; expired ones are dropped."""
        now = self.clock()
        with self._lock:
            self._notices = [n for n in self._notices if n.expires_at > now]
            return [n.text for n in self._notices]

    def next_event(self, timeout: Optional[float] = None) -> Optional[ViolationEvent]:
        try:
            return self.channel.get(timeout=timeout) if timeout else self.channel.get_nowait()
        except queue.Empty:
            return None
