# concierge/client/notification.py
"""
Toast notifications for the client.

Toasts are held in memory in display order (oldest first), capped at a
maximum count, and expire on a timer unless an action is waiting on the user.
"""
import inspect
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from concierge.client.scheduling import Scheduler, TimerHandle
from concierge.core.config import settings
from concierge.core.logging import get_logger

logger = get_logger("client.notification")

ESCAPE_KEYS = {"Escape", "Esc"}


class ToastKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ToastAction:
    label: str
    callback: Callable[[], Any]


@dataclass(eq=False)
class Toast:
    id: str
    kind: ToastKind
    message: str
    action: Optional[ToastAction] = None
    ttl: Optional[float] = None
    on_dismiss: Optional[Callable[[], Any]] = None
    dismissed: bool = False
    _timer: Optional[TimerHandle] = field(default=None, repr=False)


# The toast itself is the handle callers keep for dismissal.
ToastHandle = Toast


class ToastCenter:
    def __init__(
        self,
        scheduler: Scheduler,
        max_visible: Optional[int] = None,
        default_ttl: Optional[float] = None
    ):
        self.scheduler = scheduler
        self.max_visible = max_visible if max_visible is not None else settings.TOAST_MAX_VISIBLE
        self.default_ttl = default_ttl if default_ttl is not None else settings.TOAST_DEFAULT_TTL_SECONDS
        self._toasts: List[Toast] = []
        self._listeners: List[Callable[[List[Toast]], Any]] = []

    @property
    def toasts(self) -> List[Toast]:
        return list(self._toasts)

    def subscribe(self, listener: Callable[[List[Toast]], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        snapshot = self.toasts
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Toast listener failed: {type(e).__name__}: {e}")

    def show(
        self,
        kind,
        message: str,
        action: Optional[ToastAction] = None,
        ttl: Optional[float] = None,
        toast_id: Optional[str] = None,
        on_dismiss: Optional[Callable[[], Any]] = None
    ) -> ToastHandle:
        """
        Display a toast. A toast with the same ``toast_id`` is replaced, and the
        oldest toasts are evicted once more than ``max_visible`` are showing.
        """
        kind = ToastKind(kind)
        if toast_id is not None:
            for existing in self._toasts:
                if existing.id == toast_id:
                    self._remove(existing, run_callback=False)
                    break

        toast = Toast(
            id=toast_id or uuid.uuid4().hex[:12],
            kind=kind,
            message=message,
            action=action,
            ttl=self.default_ttl if ttl is None else ttl,
            on_dismiss=on_dismiss,
        )
        self._toasts.append(toast)

        # Actionable toasts stay until the user acts on them or dismisses them.
        if toast.action is None and toast.ttl and toast.ttl > 0:
            toast._timer = self.scheduler.call_later(toast.ttl, lambda: self._expire(toast))

        while len(self._toasts) > self.max_visible:
            self._remove(self._toasts[0], run_callback=True)

        logger.debug(f"Toast shown: {kind.value} {message}")
        self._notify()
        return toast

    def _expire(self, toast: Toast):
        toast._timer = None
        if not toast.dismissed:
            self._remove(toast, run_callback=True)
            self._notify()

    def _remove(self, toast: Toast, run_callback: bool):
        if toast.dismissed:
            return
        toast.dismissed = True
        if toast._timer is not None:
            toast._timer.cancel()
            toast._timer = None
        if toast in self._toasts:
            self._toasts.remove(toast)
        if run_callback and toast.on_dismiss is not None:
            toast.on_dismiss()

    def dismiss(self, handle: ToastHandle, run_callback: bool = True) -> None:
        """Remove a toast. Dismissing an already dismissed toast does nothing."""
        if handle.dismissed:
            return
        self._remove(handle, run_callback=run_callback)
        self._notify()

    def dismiss_latest(self) -> Optional[ToastHandle]:
        if not self._toasts:
            return None
        latest = self._toasts[-1]
        self.dismiss(latest)
        return latest

    def handle_key(self, key: str) -> bool:
        """Keyboard support: Escape dismisses the most recent toast."""
        if key in ESCAPE_KEYS:
            return self.dismiss_latest() is not None
        return False

    def act(self, handle: ToastHandle) -> Any:
        """
        Run the toast's action and remove it. Returns whatever the callback
        returns, so coroutine actions can be awaited by the caller.
        """
        if handle.dismissed or handle.action is None:
            return None
        self._remove(handle, run_callback=False)
        self._notify()
        return handle.action.callback()

    async def act_async(self, handle: ToastHandle) -> Any:
        result = self.act(handle)
        if inspect.isawaitable(result):
            return await result
        return result
