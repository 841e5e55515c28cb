"""
Client-side cooldown state machine for throttled endpoints.

    Idle --request--> (busy) --success--------> Idle
                             --429 n > 0------> CoolingDown --timer--> Idle
                             --429 n == 0-----> Idle
                             --auth failure---> Error(retryable=False)
                             --other failure--> Error(retryable=True)
    Error --retry--> (busy) ...     Error --dismiss--> Idle

The countdown always comes from the server's retryAfterSeconds. Exactly one
tick timer exists per controller and it is cancelled on every transition.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from concierge.client.api import AuthFailure, Failure, RateLimited, RequestOutcome, Success
from concierge.client.notification import ToastAction, ToastCenter, ToastHandle, ToastKind
from concierge.client.scheduling import Scheduler, TimerHandle
from concierge.core.config import settings
from concierge.core.logging import get_logger
from concierge.domain.models.rate_limit import AI_CONCIERGE_FAMILY

logger = get_logger("client.cooldown")

RequestFn = Callable[[], Awaitable[RequestOutcome]]

COOLING_DOWN_MESSAGE = "You're going a bit fast. Hang on {seconds} seconds."
READY_MESSAGE = "AI suggestions are ready. Try again for fresh tips."
RETRY_NOW_MESSAGE = "You can try again now."
SUCCESS_MESSAGE = "Suggestions updated."


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class CoolingDown:
    remaining_ms: int
    total_ms: int

    @property
    def progress(self) -> float:
        if self.total_ms <= 0:
            return 1.0
        return min(1.0, max(0.0, (self.total_ms - self.remaining_ms) / self.total_ms))


@dataclass(frozen=True)
class Error:
    message: str
    retryable: bool
    retry_action: Optional[RequestFn] = None


CooldownState = Union[Idle, CoolingDown, Error]


class CooldownController:
    def __init__(
        self,
        scheduler: Scheduler,
        family: str = AI_CONCIERGE_FAMILY,
        notifier: Optional[ToastCenter] = None,
        tick_interval: Optional[float] = None,
        notify_success: bool = False
    ):
        self.family = family
        self.scheduler = scheduler
        self.notifier = notifier
        self.tick_interval = tick_interval if tick_interval is not None else settings.COOLDOWN_TICK_SECONDS
        self.notify_success = notify_success

        self._state: CooldownState = Idle()
        self._busy = False
        self._deadline: Optional[float] = None
        self._timer: Optional[TimerHandle] = None
        self._error_toast: Optional[ToastHandle] = None
        self._listeners: List[Callable[["CooldownController"], Any]] = []
        self.logger = logger.bind(family=family)

    @property
    def state(self) -> CooldownState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def is_cooling(self) -> bool:
        return isinstance(self._state, CoolingDown)

    @property
    def trigger_disabled(self) -> bool:
        return self._busy or self.is_cooling

    @property
    def progress(self) -> float:
        if isinstance(self._state, CoolingDown):
            return self._state.progress
        return 0.0

    @property
    def percent(self) -> int:
        return round(self.progress * 100)

    @property
    def has_active_timer(self) -> bool:
        return self._timer is not None

    def subscribe(self, listener: Callable[["CooldownController"], Any]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self):
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                self.logger.error(f"Cooldown listener failed: {type(e).__name__}: {e}")

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _toast(self, kind: ToastKind, message: str, **options) -> Optional[ToastHandle]:
        if self.notifier is None:
            return None
        return self.notifier.show(kind, message, **options)

    def _enter(self, state: CooldownState):
        self._cancel_timer()
        if self._error_toast is not None and self.notifier is not None:
            self.notifier.dismiss(self._error_toast, run_callback=False)
        self._error_toast = None
        if not isinstance(state, CoolingDown):
            self._deadline = None
        self._state = state
        self._emit()

    async def trigger(self, request: RequestFn) -> Optional[RequestOutcome]:
        """
        Issue ``request`` unless a request is in flight or a cooldown is running.
        Returns the outcome, or None when the trigger was suppressed.
        """
        if self.trigger_disabled:
            self.logger.debug("Trigger suppressed while busy or cooling down")
            return None

        self._busy = True
        self._emit()
        try:
            outcome = await request()
        except asyncio.CancelledError:
            self._busy = False
            self._apply(Failure(message="The request was cancelled. You may retry now."), request)
            raise
        except Exception as e:
            self.logger.error(f"Request raised {type(e).__name__}: {e}")
            outcome = Failure(message="Something went wrong. You may retry now.")
        self._busy = False
        self._apply(outcome, request)
        return outcome

    def _apply(self, outcome: RequestOutcome, request: RequestFn):
        if isinstance(outcome, Success):
            self._enter(Idle())
            if self.notify_success:
                self._toast(ToastKind.SUCCESS, SUCCESS_MESSAGE)
        elif isinstance(outcome, RateLimited):
            seconds = outcome.throttle.retry_after_seconds
            if seconds <= 0:
                self.logger.info("Rejected with no retry delay, retry allowed immediately")
                self._enter(Idle())
                self._toast(ToastKind.INFO, RETRY_NOW_MESSAGE, toast_id=self._cooldown_toast_id)
            else:
                self.start_cooldown(seconds * 1000)
        elif isinstance(outcome, AuthFailure):
            self._enter(Error(message=outcome.message, retryable=False))
            self._show_error_toast(outcome.message, retryable=False)
        else:
            retry_action = request if outcome.retryable else None
            self._enter(Error(message=outcome.message, retryable=outcome.retryable, retry_action=retry_action))
            self._show_error_toast(outcome.message, retryable=outcome.retryable)

    @property
    def _cooldown_toast_id(self) -> str:
        return f"cooldown-{self.family}"

    def _show_error_toast(self, message: str, retryable: bool):
        action = ToastAction(label="Retry", callback=self.retry) if retryable else None
        self._error_toast = self._toast(
            ToastKind.ERROR,
            message,
            action=action,
            on_dismiss=self.dismiss_error
        )

    def start_cooldown(self, total_ms: int):
        """
        Enter CoolingDown for ``total_ms`` and start ticking.
        """
        total_ms = int(total_ms)
        if total_ms <= 0:
            self._enter(Idle())
            return

        self._enter(CoolingDown(remaining_ms=total_ms, total_ms=total_ms))
        self._deadline = self.scheduler.time() + total_ms / 1000
        self.logger.info(f"Cooling down for {total_ms} ms")
        self._toast(
            ToastKind.INFO,
            COOLING_DOWN_MESSAGE.format(seconds=(total_ms + 999) // 1000),
            ttl=total_ms / 1000,
            toast_id=self._cooldown_toast_id
        )
        self._schedule_tick(total_ms / 1000)

    def _schedule_tick(self, remaining_seconds: float):
        self._cancel_timer()
        self._timer = self.scheduler.call_later(min(self.tick_interval, remaining_seconds), self._tick)

    def _tick(self):
        self._timer = None
        if not isinstance(self._state, CoolingDown) or self._deadline is None:
            return

        remaining_ms = max(0, round((self._deadline - self.scheduler.time()) * 1000))
        if remaining_ms <= 0:
            self.logger.info("Cooldown finished")
            self._enter(Idle())
            self._toast(ToastKind.INFO, READY_MESSAGE, ttl=3.0, toast_id=self._cooldown_toast_id)
            return

        self._state = CoolingDown(remaining_ms=remaining_ms, total_ms=self._state.total_ms)
        self._schedule_tick(remaining_ms / 1000)
        self._emit()

    async def retry(self) -> Optional[RequestOutcome]:
        """Re-issue the request that failed, through the normal admission flow."""
        if not isinstance(self._state, Error) or self._state.retry_action is None:
            return None
        return await self.trigger(self._state.retry_action)

    def dismiss_error(self):
        """Leave the Error state without re-attempting."""
        if isinstance(self._state, Error):
            self._enter(Idle())

    def close(self):
        self._cancel_timer()
        self._listeners.clear()


class CooldownRegistry:
    """
    One controller per endpoint family, shared by every trigger site so the
    whole client shows a consistent cooldown for a shared server quota.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        notifier: Optional[ToastCenter] = None,
        tick_interval: Optional[float] = None
    ):
        self.scheduler = scheduler
        self.notifier = notifier
        self.tick_interval = tick_interval
        self._controllers: Dict[str, CooldownController] = {}

    def controller_for(self, family: str = AI_CONCIERGE_FAMILY) -> CooldownController:
        controller = self._controllers.get(family)
        if controller is None:
            controller = CooldownController(
                scheduler=self.scheduler,
                family=family,
                notifier=self.notifier,
                tick_interval=self.tick_interval,
            )
            self._controllers[family] = controller
        return controller

    def close(self):
        for controller in self._controllers.values():
            controller.close()
        self._controllers.clear()
