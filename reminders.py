"""
Pending-order reminder sweep.

Orders still ``confirmed`` or ``packed`` a day after they were placed get one
reminder email to the admin. The sweep records that on the order and never
touches its status.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from orders import ORDERS, as_datetime, utcnow

logger = logging.getLogger(__name__)

REMINDER_DELAY = timedelta(hours=24)
REMINDABLE_STATUSES = frozenset({"confirmed", "packed"})


def should_send_reminder(order: Optional[Dict[str, Any]], now: datetime) -> bool:
    if not order or order.get("status") not in REMINDABLE_STATUSES:
        return False
    if order.get("followUpReminderSentAt"):
        return False
    ordered_at = as_datetime(order.get("orderedAt"))
    if ordered_at is None:
        return False
    return now - ordered_at >= REMINDER_DELAY


def run_pending_order_reminder_sweep(store, notifier, now: Optional[datetime] = None) -> int:
    """Send due reminders and return how many went out."""
    now = now or utcnow()
    candidates = [o for o in store.query(ORDERS) if should_send_reminder(o, now)]
    sent_count = 0
    for order in candidates:
        try:
            if not notifier.send_admin_pending_reminder(order):
                continue
            stamp = utcnow()
            store.set(
                ORDERS,
                order["id"],
                {
                    "followUpReminderSentAt": stamp,
                    "followUpReminderStatus": order["status"],
                    "updatedAt": stamp,
                },
                merge=True,
            )
            sent_count += 1
        except Exception:
            logger.exception("Failed sending pending-order reminder for %s", order.get("id"))
    if candidates:
        logger.info("Reminder sweep: %d due, %d sent", len(candidates), sent_count)
    return sent_count


async def reminder_loop(store, notifier, interval_seconds: float) -> None:
    """Run the sweep every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(run_pending_order_reminder_sweep, store, notifier)
        except Exception:
            logger.exception("Reminder sweep failed")
