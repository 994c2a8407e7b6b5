"""
Browser-signal observers for a proctored exam.

Each ``on_*`` handler consumes one kind of browser signal and emits at most
one violation onto the session channel. Nothing here talks to the server.
"""
import logging
import threading
import time
from typing import Callable, Optional, Protocol, Tuple

from .events import ContextMenuEvent, KeyEvent, ViolationEvent
from .session import ExamSession

logger = logging.getLogger(__name__)

DEVTOOLS_SIZE_THRESHOLD = 160
DEVTOOLS_POLL_INTERVAL = 0.5
FULLSCREEN_RETRY_DELAY = 1.0

FULLSCREEN_FAILED_WARNING = "Please enable fullscreen mode for this exam"

# (key, ctrl, shift, alt); modifiers must match exactly
COPY_PASTE_COMBOS = {("c", True, False, False), ("v", True, False, False), ("x", True, False, False)}
DEVTOOLS_COMBOS = {
    ("f12", False, False, False),
    ("i", True, True, False),
    ("j", True, True, False),
    ("c", True, True, False),
}
SUSPICIOUS_COMBOS = {(key, True, False, False) for key in "afhjklnrtw"} | {("tab", False, False, True)}


class FullscreenError(Exception):
    pass


class BrowserAdapter(Protocol):
    def is_fullscreen(self) -> bool: ...

    def request_fullscreen(self) -> None: ...

    def window_size(self) -> Tuple[int, int, int, int]:
        """(outer_width, outer_height, inner_width, inner_height)"""
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> None: ...


class TimerScheduler:
    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()


def classify_key(event: KeyEvent) -> Optional[str]:
    combo = (event.key.lower(), event.ctrl, event.shift, event.alt)
    if combo in COPY_PASTE_COMBOS:
        return "COPY_PASTE"
    if combo in DEVTOOLS_COMBOS:
        return "DEVELOPER_TOOLS"
    if combo in SUSPICIOUS_COMBOS:
        return "SUSPICIOUS_KEYBOARD"
    return None


class ViolationDetector:
    def __init__(self, session: ExamSession, browser: BrowserAdapter,
                 scheduler: Optional[Scheduler] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.session = session
        self.browser = browser
        self.scheduler = scheduler or TimerScheduler()
        self.clock = clock

        self._last_active = clock()
        self._devtools_open = False
        self._poll_stop = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

    @property
    def policy(self):
        return self.session.policy

    def _emit(self, event_type: str, **details) -> bool:
        return self.session.emit(ViolationEvent(event_type, details))

    # Lifecycle

    def start(self, poll: bool = True):
        if not self.session.monitoring:
            logger.info(f"Proctoring disabled for attempt {self.session.attempt_id}; detector idle")
            return
        self._last_active = self.clock()
        if self.policy.full_screen_required:
            self.scheduler.call_later(FULLSCREEN_RETRY_DELAY, self.ensure_fullscreen)
        if poll:
            self._poll_stop.clear()
            self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
            self._poll_thread.start()

    def stop(self):
        self._poll_stop.set()
        if self._poll_thread is not None:
            self._poll_thread.join(timeout=DEVTOOLS_POLL_INTERVAL * 2)
            self._poll_thread = None

    def _poll_loop(self):
        while not self._poll_stop.wait(DEVTOOLS_POLL_INTERVAL):
            if not self.session.monitoring:
                break
            self.poll_window_size()

    # Observers

    def on_visibility_change(self, hidden: bool):
        if not hidden or not self.session.monitoring:
            return
        self.session.tab_switch_count += 1
        count = self.session.tab_switch_count
        self._emit("TAB_SWITCH", count=count)
        if not self.policy.allow_tab_switch or count > self.policy.max_tab_switches:
            self.session.warn(f"Tab switch detected! ({count}/{self.policy.max_tab_switches} allowed)")

    def on_focus(self):
        self._last_active = self.clock()

    def on_blur(self):
        if not self.session.monitoring:
            return
        time_away = int((self.clock() - self._last_active) * 1000)
        self._emit("WINDOW_FOCUS_LOSS", timeAway=time_away)

    def on_fullscreen_change(self):
        if not self.session.monitoring or not self.policy.full_screen_required:
            return
        if self.browser.is_fullscreen():
            return
        self._emit("FULLSCREEN_EXIT")
        self.session.warn("Please return to fullscreen mode!")
        self.scheduler.call_later(FULLSCREEN_RETRY_DELAY, self.ensure_fullscreen)

    def ensure_fullscreen(self):
        if not self.session.monitoring or self.browser.is_fullscreen():
            return
        try:
            self.browser.request_fullscreen()
        except FullscreenError as e:
            logger.warning(f"Fullscreen request rejected: {e}")
            self.session.warn(FULLSCREEN_FAILED_WARNING)

    def on_mouse_leave(self):
        if self.session.monitoring:
            self._emit("MOUSE_LEFT_WINDOW")

    def on_context_menu(self, event: ContextMenuEvent):
        if not self.session.monitoring:
            return
        event.prevent_default()
        self._emit("RIGHT_CLICK")
        self.session.warn("Right-click is disabled during the exam")

    def on_key_down(self, event: KeyEvent):
        if not self.session.monitoring:
            return
        kind = classify_key(event)
        if kind is None:
            return

        event.prevent_default()
        if kind == "COPY_PASTE":
            self._emit(kind, key=event.key)
            self.session.warn("Copy/paste operations are not allowed")
        elif kind == "DEVELOPER_TOOLS":
            self._emit(kind, source="shortcut", key=event.key)
            self.session.warn("Developer tools access blocked")
        else:
            self._emit(kind, key=event.key, ctrl=event.ctrl, shift=event.shift, alt=event.alt)

    def poll_window_size(self):
        """One devtools-size check; reports once per closed-to-open transition."""
        if not self.session.monitoring:
            return
        outer_w, outer_h, inner_w, inner_h = self.browser.window_size()
        width_delta = outer_w - inner_w
        height_delta = outer_h - inner_h

        if width_delta > DEVTOOLS_SIZE_THRESHOLD or height_delta > DEVTOOLS_SIZE_THRESHOLD:
            if not self._devtools_open:
                self._devtools_open = True
                self._emit("DEVELOPER_TOOLS", source="window_size",
                           widthDelta=width_delta, heightDelta=height_delta)
                self.session.warn("Developer tools detected and blocked")
        else:
            self._devtools_open = False
