import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import FakeNotifier
from main import create_app
from reminders import reminder_loop, run_pending_order_reminder_sweep, should_send_reminder

NOW = datetime(2024, 6, 2, 12, 0, tzinfo=timezone.utc)


def _order(store, status="confirmed", age=timedelta(hours=30), **extra):
    doc = {"status": status, "orderedAt": NOW - age, "totalAmount": 100, **extra}
    return store.add("orders", doc)


def test_should_send_reminder_rules():
    old = NOW - timedelta(hours=25)
    assert should_send_reminder({"status": "confirmed", "orderedAt": old}, NOW)
    assert should_send_reminder({"status": "packed", "orderedAt": old.isoformat()}, NOW)
    assert should_send_reminder({"status": "packed", "orderedAt": "2024-06-01T11:00:00Z"}, NOW)
    assert not should_send_reminder({"status": "shipped", "orderedAt": old}, NOW)
    assert not should_send_reminder({"status": "confirmed", "orderedAt": NOW - timedelta(hours=2)}, NOW)
    assert not should_send_reminder({"status": "confirmed", "orderedAt": old, "followUpReminderSentAt": old}, NOW)
    assert not should_send_reminder({"status": "confirmed", "orderedAt": "not a date"}, NOW)
    assert not should_send_reminder({"status": "confirmed"}, NOW)
    assert not should_send_reminder(None, NOW)


def test_sweep_marks_reminded_orders_without_touching_status(store):
    due = _order(store, status="packed")
    recent = _order(store, age=timedelta(hours=1))
    shipped = _order(store, status="shipped")
    notifier = FakeNotifier()

    sent = run_pending_order_reminder_sweep(store, notifier, now=NOW)

    assert sent == 1
    assert notifier.sent == [("reminder", due)]
    doc = store.get("orders", due)
    assert doc["status"] == "packed"
    assert doc["followUpReminderStatus"] == "packed"
    assert doc["followUpReminderSentAt"] is not None
    assert "followUpReminderSentAt" not in store.get("orders", recent)
    assert "followUpReminderSentAt" not in store.get("orders", shipped)


def test_sweep_sends_only_once(store):
    _order(store)
    notifier = FakeNotifier()
    assert run_pending_order_reminder_sweep(store, notifier, now=NOW) == 1
    assert run_pending_order_reminder_sweep(store, notifier, now=NOW) == 0


def test_undelivered_reminder_is_not_recorded(store):
    order_id = _order(store)
    sent = run_pending_order_reminder_sweep(store, FakeNotifier(deliver=False), now=NOW)
    assert sent == 0
    assert "followUpReminderSentAt" not in store.get("orders", order_id)


def test_one_failing_order_does_not_block_the_rest(store):
    broken = _order(store)
    fine = _order(store, status="packed")
    notifier = FakeNotifier(fail_ids=[broken])

    sent = run_pending_order_reminder_sweep(store, notifier, now=NOW)

    assert sent == 1
    assert "followUpReminderSentAt" not in store.get("orders", broken)
    assert store.get("orders", fine)["followUpReminderStatus"] == "packed"


def test_reminder_loop_sweeps_until_cancelled(store):
    due = _order(store, age=timedelta(days=2))
    notifier = FakeNotifier()

    async def run():
        task = asyncio.create_task(reminder_loop(store, notifier, 0.01))
        for _ in range(200):
            if notifier.sent:
                break
            await asyncio.sleep(0.01)
        # later sweeps find nothing due
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return task

    task = asyncio.run(run())

    assert task.cancelled()
    assert notifier.sent == [("reminder", due)]
    assert store.get("orders", due)["followUpReminderSentAt"] is not None


def test_app_starts_and_stops_reminder_task(settings, store, notifier, gateway):
    app = create_app(
        settings.model_copy(update={"reminder_sweep_interval_seconds": 3600}),
        store=store,
        notifier=notifier,
        gateway=gateway,
    )
    with TestClient(app):
        task = app.state.reminder_task
        assert task is not None
        assert not task.done()

    assert task.cancelled()
    assert notifier.sent == []
