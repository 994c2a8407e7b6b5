"""
One proctored exam run on the student's machine, from start to submit.

:class:`ExamClient` owns the :class:`ExamSession` and the detector, reporter
and countdown that share it. The countdown auto-submits at zero; a submit or a
termination from the server closes the session and stops everything.
"""
import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import pytz
import requests

from .countdown import ExamCountdown
from .detector import BrowserAdapter, Scheduler, ViolationDetector
from .events import MonitorPolicy
from .reporter import REQUEST_TIMEOUT, ViolationReporter
from .session import ExamSession

logger = logging.getLogger(__name__)


def _naive_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.UTC).replace(tzinfo=None)
    return parsed


def _utc_now() -> datetime:
    return datetime.now(pytz.UTC).replace(tzinfo=None)


class ExamClient:
    def __init__(self, exam: Dict[str, Any], attempt: Dict[str, Any], browser: BrowserAdapter,
                 base_url: str = "", token: Optional[str] = None, http=None,
                 scheduler: Optional[Scheduler] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_finished: Optional[Callable[[Optional[Dict[str, Any]]], None]] = None):
        self.exam = exam
        self.attempt = attempt
        self.clock = clock
        self.on_finished = on_finished

        self.answers: Dict[int, int] = {
            int(index): option for index, option in (attempt.get("answers") or {}).items()
        }
        self.result: Optional[Dict[str, Any]] = None

        self.session = ExamSession(exam["id"], attempt["id"], MonitorPolicy.from_exam(exam), clock=clock)
        self.detector = ViolationDetector(self.session, browser, scheduler=scheduler, clock=clock)
        self.reporter = ViolationReporter(
            self.session, base_url=base_url, token=token, http=http, on_terminated=self._on_terminated
        )

        now = _utc_now()
        self._elapsed_before = max(0.0, (now - _naive_utc(attempt["startTime"])).total_seconds())
        self.countdown = ExamCountdown(
            max(0.0, (_naive_utc(attempt["deadline"]) - now).total_seconds()),
            on_expire=self.submit,
            clock=clock,
        )

        self._opened_at: Optional[float] = None
        self._lock = threading.Lock()
        self._finished = False

    @classmethod
    def begin(cls, exam_id: int, browser: BrowserAdapter, base_url: str = "",
              token: Optional[str] = None, http=None, screen_resolution: Optional[str] = None,
              **kwargs) -> "ExamClient":
        """Resume the running attempt of an exam, or start a new one."""
        http = http or requests.Session()
        base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        url = f"{base_url}/api/v1/exams/{exam_id}"

        page = http.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
        page.raise_for_status()
        page = page.json()

        attempt = page.get("attempt")
        if attempt is None:
            started = http.post(url, json={"screenResolution": screen_resolution}, headers=headers,
                                timeout=REQUEST_TIMEOUT)
            started.raise_for_status()
            attempt = started.json()["attempt"]
        return cls(page["exam"], attempt, browser, base_url=base_url, token=token, http=http, **kwargs)

    @property
    def submit_url(self) -> str:
        return self.reporter.url

    @property
    def finished(self) -> bool:
        return self._finished

    def time_spent(self) -> int:
        running = self.clock() - self._opened_at if self._opened_at is not None else 0.0
        return int(self._elapsed_before + running)

    def open(self, background: bool = True):
        self.session.open()
        self._opened_at = self.clock()
        self.detector.start(poll=background)
        if background:
            self.reporter.start()
            self.countdown.start()

    def answer(self, question_index: int, option_index: int):
        """Record an answer in presented coordinates."""
        self.answers[question_index] = option_index

    def submit(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            if self._finished:
                return self.result

        self.reporter.process_pending()
        if self.session.terminated:
            return None

        body = {
            "answers": {str(index): option for index, option in self.answers.items()},
            "timeSpent": self.time_spent(),
        }
        try:
            response = self.reporter.http.put(self.submit_url, json=body, headers=self.reporter.headers(),
                                              timeout=self.reporter.timeout)
        except requests.RequestException as e:
            logger.error(f"Submission of attempt {self.session.attempt_id} failed: {e}")
            return None

        try:
            data = response.json()
        except ValueError:
            data = {}

        if 200 <= response.status_code < 300:
            self.result = data
            logger.info(f"Attempt {self.session.attempt_id} submitted: {data.get('attempt', {}).get('status')}")
            self.close()
        elif response.status_code == 409:
            # The server already closed the attempt (stale, terminated or submitted elsewhere)
            logger.warning(f"Attempt {self.session.attempt_id} no longer accepts answers: {data.get('detail')}")
            self.close(terminated=bool(data.get("terminated")))
        else:
            logger.error(
                f"Submission of attempt {self.session.attempt_id} rejected with {response.status_code}: "
                f"{data.get('detail', response.text)}"
            )
        return self.result

    def _on_terminated(self):
        self.close(terminated=True)

    def close(self, terminated: bool = False):
        with self._lock:
            if self._finished:
                return
            self._finished = True

        self.session.close(terminated=terminated)
        self.countdown.stop()
        self.detector.stop()
        self.reporter.stop()
        if self.on_finished:
            self.on_finished(self.result)
