import asyncio
from datetime import timedelta

from kaapav.models.order import Order
from kaapav.scheduler.jobs import CRON_JOBS, build_daily_report, run_cron
from kaapav.scheduler.runner import build_scheduler
from kaapav.services.customers import touch_customer
from kaapav.services.orders import create_order
from kaapav.utils.clock import utcnow
from tests.fixtures_data import CUSTOMER_PHONE, build_runtime, reply_button_ids

ITEMS = [{"product_id": "EAR-001", "name": "Golden Hoop Earrings", "price": 300, "quantity": 1}]


def _order_aged(db, hours):
    order, _ = create_order(
        db, phone=CUSTOMER_PHONE, items=ITEMS, shipping_address="12 MG Road", shipping_pincode="560001"
    )
    order.created_at = utcnow() - timedelta(hours=hours)
    db.commit()
    return order


def _setup():
    runtime = build_runtime()
    db = runtime.session_factory()
    touch_customer(db, CUSTOMER_PHONE, "Priya Sharma")
    return runtime, db


def test_unknown_cron_expression_runs_nothing():
    runtime, _ = _setup()

    assert asyncio.run(run_cron("* * * * *", runtime)) == {}


def test_payment_reminder_offers_pay_help_and_cancel():
    runtime, db = _setup()
    order = _order_aged(db, hours=3)

    results = asyncio.run(run_cron("*/5 * * * *", runtime))

    assert results["send_payment_reminders"] == {"payment_reminders": 1}
    assert results["run_due_broadcasts"] == {"broadcasts": 0}
    sent = runtime.transport.sent_to(CUSTOMER_PHONE)[-1]
    assert reply_button_ids(sent) == [f"PAY_{order.order_id}", "CHAT_NOW", f"CANCEL_{order.order_id}"]

    # reminded orders wait four hours before the next nudge
    again = asyncio.run(run_cron("*/5 * * * *", runtime))
    assert again["send_payment_reminders"] == {"payment_reminders": 0}


def test_fresh_orders_are_not_reminded():
    runtime, db = _setup()
    _order_aged(db, hours=1)

    results = asyncio.run(run_cron("*/5 * * * *", runtime))

    assert results["send_payment_reminders"] == {"payment_reminders": 0}
    assert runtime.transport.sent_to(CUSTOMER_PHONE) == []


def test_nightly_cleanup_cancels_stale_unpaid_orders():
    runtime, db = _setup()
    stale = _order_aged(db, hours=49)
    recent = _order_aged(db, hours=5)

    results = asyncio.run(run_cron("0 0 * * *", runtime))

    cleanup = results["run_cleanup"]
    assert cleanup["auto_cancelled"] == 1
    assert set(cleanup) >= {"states", "auto_cancelled", "events", "kv", "abandoned", "expired"}
    assert "date" in results["send_daily_report"]
    assert "engagement_updated" in results["update_segments"]

    db.expire_all()
    assert db.get(Order, stale.id).status == "cancelled"
    assert db.get(Order, stale.id).cancellation_reason == "Auto-cancelled: payment not received"
    assert db.get(Order, recent.id).status == "pending"


def test_shipment_sync_is_skipped_without_courier_credentials():
    runtime, _ = _setup()

    assert asyncio.run(run_cron("0 */6 * * *", runtime)) == {"sync_shipments": {"tracking_synced": 0}}


def test_daily_report_counts_yesterday():
    runtime, db = _setup()
    order = _order_aged(db, hours=0)
    order.created_at = utcnow() - timedelta(days=1)
    db.commit()

    report = build_daily_report(db)

    assert report["date"] == (utcnow() - timedelta(days=1)).date().isoformat()
    assert report["orders"]["total"] == 1
    assert report["orders"]["successful"] == 0


def test_scheduler_registers_one_job_per_expression():
    runtime, _ = _setup()

    scheduler = build_scheduler(runtime)

    assert sorted(job.id for job in scheduler.get_jobs()) == sorted(f"cron:{expr}" for expr in CRON_JOBS)


def test_failing_job_does_not_stop_the_rest(monkeypatch):
    runtime, _ = _setup()
    ran = []

    async def reconcile_rows(runtime, db):
        raise ValueError("bad row")

    async def after_reconcile(runtime, db):
        ran.append("after")
        return {"ok": True}

    monkeypatch.setitem(CRON_JOBS, "0 0 * * *", (reconcile_rows, after_reconcile))

    results = asyncio.run(run_cron("0 0 * * *", runtime))

    assert results["reconcile_rows"] == {"error": "bad row"}
    assert results["after_reconcile"] == {"ok": True}
    assert ran == ["after"]
