"""
Notification queue - one user-facing message visible at a time.

Messages are shown strictly in enqueue order. When the visible message's
duration elapses the next one is shown; a single-shot timer is re-armed
on every dequeue. No kind preempts another.

The queue follows the running event loop. When it is used from a new
loop, a message left visible by a finished loop is hidden and draining
resumes on the new loop.
"""
import asyncio
import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)


class NotificationKind(enum.Enum):
    """Notification kind enum."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    message: str
    kind: NotificationKind
    duration: float


Listener = Callable[[Optional[Notification]], None]


class NotificationQueue:
    """
    FIFO notification drain bound to the running event loop.

    Listeners receive the newly visible Notification, or None when the
    visible slot clears.
    """

    def __init__(self, default_duration: float = 3.0):
        self.default_duration = default_duration
        self._queue: Deque[Notification] = deque()
        self._visible: Optional[Notification] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Listener] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def visible(self) -> Optional[Notification]:
        return self._visible

    @property
    def pending(self) -> List[Notification]:
        return list(self._queue)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def enqueue(self, message: str, kind: NotificationKind = NotificationKind.INFO,
                duration: Optional[float] = None) -> Notification:
        notification = Notification(message, kind, self.default_duration if duration is None else duration)
        self._bind_loop()
        self._queue.append(notification)
        self._idle.clear()
        if self._visible is None:
            self._show_next()
        return notification

    # Shorthands used by the services
    def success(self, message: str, duration: Optional[float] = None) -> Notification:
        return self.enqueue(message, NotificationKind.SUCCESS, duration)

    def warning(self, message: str, duration: Optional[float] = None) -> Notification:
        return self.enqueue(message, NotificationKind.WARNING, duration)

    def error(self, message: str, duration: Optional[float] = None) -> Notification:
        return self.enqueue(message, NotificationKind.ERROR, duration)

    def clear(self) -> None:
        """Discard queued messages and hide the visible one immediately."""
        self._queue.clear()
        self._cancel_timer()
        if self._visible is not None:
            self._visible = None
            self._emit(None)
        self._idle.set()

    async def join(self) -> None:
        """Wait until every queued message has been shown and hidden."""
        self._bind_loop()
        if self._visible is None and self._queue:
            self._show_next()
        await self._idle.wait()

    def _bind_loop(self) -> None:
        loop = asyncio.get_running_loop()
        if loop is self._loop:
            return
        self._cancel_timer()
        if self._loop is not None:
            logger.debug("[NOTIFY] Event loop changed, resuming drain on the new loop")
        self._loop = loop
        self._idle = asyncio.Event()
        if not self._queue:
            self._idle.set()
        if self._visible is not None:
            self._visible = None
            self._emit(None)

    def _show_next(self) -> None:
        self._cancel_timer()
        if not self._queue:
            self._visible = None
            self._emit(None)
            self._idle.set()
            return
        self._visible = self._queue.popleft()
        self._emit(self._visible)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._visible.duration, self._show_next)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self, notification: Optional[Notification]) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("[NOTIFY] Listener failed")
