"""
View state for the cooldown indicator and toasts.

Renders plain attribute dictionaries that a page shell (or a test) can map
onto DOM elements.
"""
from typing import Any, Dict, List, Optional

from concierge.client.cooldown import CooldownController, CoolingDown, Error, RequestFn
from concierge.client.notification import Toast, ToastCenter

TRIGGER_LABEL = "Get AI concierge tips"
BUSY_LABEL = "Thinking..."


class CooldownIndicator:
    """
    Trigger button, progress bar and live status for one trigger site.
    Several indicators can share one controller.
    """

    def __init__(self, controller: CooldownController, request: RequestFn, label: str = TRIGGER_LABEL):
        self.controller = controller
        self.request = request
        self.label = label

    async def click(self):
        """User pressed the trigger. Does nothing while the trigger is disabled."""
        if self.controller.trigger_disabled:
            return None
        return await self.controller.trigger(self.request)

    def trigger_attributes(self) -> Dict[str, Any]:
        state = self.controller.state
        if self.controller.busy:
            label = BUSY_LABEL
        elif isinstance(state, CoolingDown):
            label = f"Cooldown {(state.remaining_ms + 999) // 1000}s"
        else:
            label = self.label
        return {
            "data-testid": "ai-trigger",
            "disabled": self.controller.trigger_disabled,
            "label": label,
        }

    def progress_attributes(self) -> Optional[Dict[str, str]]:
        if not isinstance(self.controller.state, CoolingDown):
            return None
        return {
            "role": "progressbar",
            "aria-label": "AI cooldown progress",
            "aria-valuemin": "0",
            "aria-valuemax": "100",
            "aria-valuenow": str(self.controller.percent),
            "data-testid": "ai-cooldown-indicator",
        }

    def status_message(self) -> str:
        state = self.controller.state
        if isinstance(state, CoolingDown):
            seconds = (state.remaining_ms + 999) // 1000
            return f"You're going a bit fast. Hang on {seconds} seconds."
        if isinstance(state, Error):
            return state.message
        return ""

    def render(self) -> Dict[str, Any]:
        return {
            "trigger": self.trigger_attributes(),
            "progress": self.progress_attributes(),
            "status": {
                "role": "status",
                "aria-live": "polite",
                "data-testid": "ai-cooldown-live",
                "message": self.status_message(),
            },
        }


def render_toast(toast: Toast) -> Dict[str, Any]:
    action = None
    if toast.action is not None:
        action = {"data-testid": "toast-action", "label": toast.action.label}
    return {
        "data-testid": "toast",
        "data-kind": toast.kind.value,
        "role": "alert" if toast.kind.value == "error" else "status",
        "message": toast.message,
        "dismiss": {"data-testid": "toast-dismiss", "aria-label": "Dismiss notification"},
        "action": action,
    }


def render_toasts(center: ToastCenter) -> List[Dict[str, Any]]:
    return [render_toast(toast) for toast in center.toasts]
