from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from sales.models import SaleTransaction
from sales.settlement import SELLER_NOT_PAYABLE_MESSAGE, retry_pending_payouts
from sales.tasks import retry_pending_payouts as retry_task

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending_sale(sale_factory):
    def _create(**kwargs):
        kwargs.setdefault("status", SaleTransaction.Status.COMPLETED)
        kwargs.setdefault("message", "Auto-completed after 25 days. Payout pending")
        return sale_factory(**kwargs)

    return _create


def test_zero_balance_skips_the_run(fake_gateway, pending_sale):
    pending_sale()

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.message == "No available balance for payouts"
    assert summary.processed == 0
    assert fake_gateway.transfers == []


def test_nothing_pending(fake_gateway, sale_factory):
    fake_gateway.balance_cents = 50000
    sale_factory()

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.message == "No pending payouts to process"


def test_smaller_later_sale_still_fits(fake_gateway, pending_sale):
    fake_gateway.balance_cents = 50000
    large = pending_sale(age=timedelta(days=40), seller_payout=Decimal("900.00"))
    small = pending_sale(age=timedelta(days=30), seller_payout=Decimal("300.00"))

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.processed == 1
    assert summary.failed == 0
    assert summary.results[0] == {
        "transaction_id": large.pk,
        "success": False,
        "message": "Insufficient balance: need $900.00, have $500.00",
    }
    assert summary.results[1]["success"] is True
    assert summary.message == "Processed 1 payouts, 0 failed"

    large.refresh_from_db()
    small.refresh_from_db()
    assert large.payout_completed_at is None
    assert small.payout_completed_at is not None
    assert small.transfer_id == "tr_test_1"
    assert small.message is None


def test_balance_is_spent_down_within_a_run(fake_gateway, pending_sale):
    fake_gateway.balance_cents = 50000
    first = pending_sale(age=timedelta(days=40), seller_payout=Decimal("300.00"))
    second = pending_sale(age=timedelta(days=30), seller_payout=Decimal("300.00"))

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.processed == 1
    assert fake_gateway.balance_checks == 1
    assert summary.results[1]["message"] == "Insufficient balance: need $300.00, have $200.00"
    second.refresh_from_db()
    assert second.payout_completed_at is None
    first.refresh_from_db()
    assert first.payout_completed_at is not None


def test_non_payable_seller_is_recorded(fake_gateway, pending_sale, seller_factory):
    fake_gateway.balance_cents = 500000
    sale = pending_sale(seller=seller_factory(payable=False))

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.processed == 0
    assert summary.results[0]["message"] == SELLER_NOT_PAYABLE_MESSAGE
    sale.refresh_from_db()
    assert sale.message == SELLER_NOT_PAYABLE_MESSAGE


def test_transfer_failure_writes_message(fake_gateway, pending_sale):
    fake_gateway.balance_cents = 500000
    sale = pending_sale()
    fake_gateway.fail_transfers_to.add(sale.seller.stripe_account_id)

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.failed == 1
    assert summary.message == "Processed 0 payouts, 1 failed"
    sale.refresh_from_db()
    assert sale.payout_completed_at is None
    assert sale.message.startswith("Payout retry failed: ")


def test_next_retry_after_rejection_uses_a_fresh_key(fake_gateway, pending_sale):
    fake_gateway.balance_cents = 500000
    sale = pending_sale()
    fake_gateway.fail_transfers_to.add(sale.seller.stripe_account_id)

    retry_pending_payouts(gateway=fake_gateway)

    sale.refresh_from_db()
    assert sale.payout_attempts == 1
    assert fake_gateway.failed_keys == [f"sale:{sale.pk}:payout:0"]

    fake_gateway.fail_transfers_to.clear()
    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.processed == 1
    assert fake_gateway.transfers[0]["idempotency_key"] == f"sale:{sale.pk}:payout:1"
    sale.refresh_from_db()
    assert sale.payout_completed_at is not None
    assert sale.message is None


def test_already_paid_sales_are_ignored(fake_gateway, pending_sale):
    fake_gateway.balance_cents = 500000
    pending_sale(payout_completed_at=timezone.now(), transfer_id="tr_old")

    summary = retry_pending_payouts(gateway=fake_gateway)

    assert summary.message == "No pending payouts to process"


def test_task_returns_summary(fake_gateway, pending_sale):
    fake_gateway.balance_cents = 500000
    pending_sale()

    result = retry_task()

    assert result["processed"] == 1
    assert result["message"] == "Processed 1 payouts, 0 failed"
