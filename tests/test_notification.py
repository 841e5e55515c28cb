import asyncio

import pytest

from concierge.client.notification import ToastAction, ToastCenter, ToastKind
from concierge.client.widgets import render_toast, render_toasts


@pytest.fixture
def center(scheduler):
    return ToastCenter(scheduler, max_visible=3, default_ttl=5.0)


def test_show_returns_handle(center):
    toast = center.show("info", "Saved")
    assert toast.kind == ToastKind.INFO
    assert center.toasts == [toast]


def test_unknown_kind_is_rejected(center):
    with pytest.raises(ValueError):
        center.show("warning", "Nope")


def test_cap_evicts_oldest_first(center):
    shown = [center.show("info", f"Toast {i}") for i in range(6)]

    assert len(center.toasts) == 3
    assert [t.message for t in center.toasts] == ["Toast 3", "Toast 4", "Toast 5"]
    assert all(t.dismissed for t in shown[:3])


def test_dismiss_is_idempotent(center):
    calls = []
    toast = center.show("error", "Failed", on_dismiss=lambda: calls.append(1))
    other = center.show("info", "Still here")

    center.dismiss(toast)
    center.dismiss(toast)
    center.dismiss(toast)

    assert center.toasts == [other]
    assert calls == [1]


def test_dismissing_evicted_toast_is_noop(center):
    first = center.show("info", "First")
    for i in range(3):
        center.show("info", f"Next {i}")

    center.dismiss(first)
    assert len(center.toasts) == 3


def test_toasts_expire_after_ttl(center, scheduler):
    center.show("success", "Done", ttl=2.0)
    scheduler.advance(1.9)
    assert len(center.toasts) == 1
    scheduler.advance(0.2)
    assert center.toasts == []


def test_actionable_toast_does_not_expire(center, scheduler):
    toast = center.show("error", "Failed", action=ToastAction("Retry", lambda: None), ttl=1.0)
    scheduler.advance(60)
    assert center.toasts == [toast]


def test_escape_dismisses_most_recent(center):
    older = center.show("info", "Older")
    center.show("info", "Newer")

    assert center.handle_key("Escape") is True
    assert center.toasts == [older]
    assert center.handle_key("Enter") is False
    assert center.handle_key("Escape") is True
    assert center.handle_key("Escape") is False


def test_same_id_replaces_existing(center, scheduler):
    center.show("info", "Cooling down", toast_id="cooldown", ttl=10)
    center.show("info", "Ready", toast_id="cooldown", ttl=3)

    assert [t.message for t in center.toasts] == ["Ready"]
    scheduler.advance(3)
    assert center.toasts == []


def test_act_runs_action_once(center):
    calls = []
    toast = center.show("error", "Failed", action=ToastAction("Retry", lambda: calls.append(1)))

    center.act(toast)
    center.act(toast)
    assert calls == [1]
    assert center.toasts == []


def test_act_async_awaits_coroutine_actions(center):
    async def retry():
        return "retried"

    toast = center.show("error", "Failed", action=ToastAction("Retry", retry))
    assert asyncio.run(center.act_async(toast)) == "retried"


def test_subscribers_see_updates(center):
    seen = []
    unsubscribe = center.subscribe(lambda toasts: seen.append(len(toasts)))
    toast = center.show("info", "One")
    center.dismiss(toast)
    unsubscribe()
    center.show("info", "Two")
    assert seen == [1, 0]


def test_render_toast_exposes_test_ids(center):
    plain = center.show("info", "Hello")
    actionable = center.show("error", "Failed", action=ToastAction("Retry", lambda: None))

    rendered = render_toasts(center)
    assert rendered[0]["data-testid"] == "toast"
    assert rendered[0]["dismiss"]["data-testid"] == "toast-dismiss"
    assert rendered[0]["action"] is None
    assert render_toast(actionable)["action"] == {"data-testid": "toast-action", "label": "Retry"}
    assert render_toast(plain)["data-kind"] == "info"


def test_failing_subscriber_does_not_block_show(center):
    def broken(toasts):
        raise RuntimeError("render failed")

    center.subscribe(broken)
    toast = center.show("info", "Still shown")
    assert center.toasts == [toast]
    center.dismiss(toast)
    assert center.toasts == []
