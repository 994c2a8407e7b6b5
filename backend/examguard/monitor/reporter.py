"""
Sends violation events from the session channel to the exam API.

Reports are fire-and-forget: transport errors and rejected reports are
logged and dropped while monitoring continues. A termination signal from the
server closes the session and calls ``on_terminated``.
"""
import logging
import threading
from typing import Any, Callable, Dict, Optional

import requests

from .events import ViolationEvent
from .session import ExamSession

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 12


class ViolationReporter:
    def __init__(self, session: ExamSession, base_url: str = "", token: Optional[str] = None,
                 http=None, on_terminated: Optional[Callable[[], None]] = None,
                 timeout: float = REQUEST_TIMEOUT):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.http = http or requests.Session()
        self.on_terminated = on_terminated
        self.timeout = timeout

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        return f"{self.base_url}/api/v1/exams/{self.session.exam_id}/attempts/{self.session.attempt_id}"

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def report(self, event: ViolationEvent) -> Optional[Dict[str, Any]]:
        try:
            response = self.http.post(self.url, json=event.to_payload(), headers=self.headers(),
                                      timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Violation report {event.event_type} not delivered: {e}")
            return None

        try:
            data = response.json()
        except ValueError:
            data = {}

        if data.get("terminated"):
            self._terminate()
            return data

        if not 200 <= response.status_code < 300:
            logger.warning(
                f"Violation report {event.event_type} rejected with {response.status_code}: "
                f"{data.get('detail', response.text)}"
            )
            return None

        if data.get("warning"):
            self.session.warn(data["warning"])
        return data

    def _terminate(self):
        if self.session.terminated:
            return
        logger.warning(f"Attempt {self.session.attempt_id} terminated by the server")
        self.session.close(terminated=True)
        if self.on_terminated:
            self.on_terminated()

    def process_pending(self) -> int:
        """Send everything currently queued; returns how many reports were attempted."""
        sent = 0
        while not self.session.terminated:
            event = self.session.next_event()
            if event is None:
                break
            self.report(event)
            sent += 1
        return sent

    def start(self):
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _run(self):
        while not self._stop.is_set() and not self.session.terminated:
            event = self.session.next_event(timeout=0.5)
            if event is not None:
                self.report(event)
