import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ExamCountdown:
    """Client-side exam timer; calls ``on_expire`` (auto-submit) once at zero.

    Advisory only: the server decides whether a late submission is accepted.
    """

    def __init__(self, duration_seconds: float, on_expire: Callable[[], None],
                 clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.on_expire = on_expire
        self.ends_at = clock() + duration_seconds
        self.expired = False

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def remaining(self) -> int:
        return max(0, int(round(self.ends_at - self.clock())))

    def format_remaining(self) -> str:
        minutes, seconds = divmod(self.remaining(), 60)
        return f"{minutes:02d}:{seconds:02d}"

    def tick(self) -> bool:
        """Check the clock; True only on the tick that fired ``on_expire``."""
        with self._lock:
            if self.expired or self.clock() < self.ends_at:
                return False
            self.expired = True
        logger.info("Exam time is up, submitting automatically")
        self.on_expire()
        return True

    def start(self, interval: float = 1.0):
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, args=(interval,), daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._thread = None

    def _run(self, interval: float):
        while not self._stop.wait(interval):
            if self.tick():
                break
