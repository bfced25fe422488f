import os
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_API_TOKEN", "admin-test-token")
os.environ["SKIP_MIGRATIONS"] = "1"

from affiliate_engine.core.db import Base  # noqa: E402
from affiliate_engine.core.errors import (  # noqa: E402
    FraudBlockedError,
    InvalidTransitionError,
    NotFoundError,
    PayoutProviderError,
    ValidationFailedError,
)
from affiliate_engine.core.fraud import create_manual_flag  # noqa: E402
from affiliate_engine.core.lifecycle import reject_commissions  # noqa: E402
from affiliate_engine.core.payouts import (  # noqa: E402
    approve_payout_run,
    cancel_payout_run,
    create_payout_run,
    pay_now,
    refresh_payout_run_status,
    upcoming_payouts,
)
from affiliate_engine.core.time import utcnow  # noqa: E402
from affiliate_engine.crud.payouts import list_payout_runs, list_run_commission_ids  # noqa: E402
from affiliate_engine.integrations.payouts.base import PayoutBatch, PayoutProvider  # noqa: E402
from affiliate_engine.models.commissions import Commission  # noqa: E402
from affiliate_engine.models.payouts import PayoutRun  # noqa: E402
from tests.factories import SHOP_ID, make_affiliate, make_commission, make_offer  # noqa: E402


def _setup_db(db_url: str):
    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        future=True,
    )
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    Base.metadata.create_all(bind=engine)
    return SessionLocal


class FakeProvider(PayoutProvider):
    def __init__(self, *, fail: bool = False, status: str = "PENDING"):
        self.fail = fail
        self.status = status
        self.submitted = []

    def submit_payout(self, items, *, sender_batch_id):
        if self.fail:
            raise PayoutProviderError("PayPal API error: 422 - INSUFFICIENT_FUNDS", provider_status=422)
        self.submitted.append((list(items), sender_batch_id))
        return PayoutBatch(batch_id="BATCH-123", status="PENDING")

    def get_payout_status(self, batch_id):
        return self.status


def _period():
    now = utcnow()
    return now - timedelta(days=30), now


def _statuses(db, ids):
    rows = db.query(Commission.id, Commission.status).filter(Commission.id.in_(ids)).all()
    return {row[0]: row[1] for row in rows}


def test_approving_a_run_pays_every_member_atomically():
    SessionLocal = _setup_db(f"sqlite:///./payout_approve_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        first = make_commission(db, affiliate=affiliate, status="eligible", amount="10.00")
        second = make_commission(db, affiliate=affiliate, status="approved", amount="5.50")
        start, end = _period()

        run = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[first.id, second.id], period_start=start, period_end=end)
        assert run.status == "draft"
        assert list_run_commission_ids(db, run_id=run.id) == sorted([first.id, second.id])

        result = approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id, payout_reference="bank-transfer-42")

        assert result.run.status == "paid"
        assert result.run.payout_reference == "bank-transfer-42"
        assert result.run.approved_at is not None
        assert result.total_amount == Decimal("15.50")
        assert set(_statuses(db, [first.id, second.id]).values()) == {"paid"}
        assert db.get(Commission, first.id).paid_at is not None


def test_approval_pays_payable_members_and_releases_the_rest():
    SessionLocal = _setup_db(f"sqlite:///./payout_reversed_member_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        keep = make_commission(db, affiliate=affiliate, status="eligible", amount="8.00")
        dropped = make_commission(db, affiliate=affiliate, status="eligible", amount="2.00")
        start, end = _period()
        run = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[keep.id, dropped.id], period_start=start, period_end=end)
        reject_commissions(db, shop_id=SHOP_ID, commission_ids=[dropped.id])

        result = approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id)

        assert result.run.status == "paid"
        assert result.requested == 2
        assert result.paid_ids == [keep.id]
        assert result.detached_ids == [dropped.id]
        assert result.total_amount == Decimal("8.00")
        assert _statuses(db, [keep.id, dropped.id]) == {keep.id: "paid", dropped.id: "reversed"}
        assert list_run_commission_ids(db, run_id=run.id) == [keep.id]


def test_members_not_yet_past_eligible_date_are_released_for_a_later_run():
    SessionLocal = _setup_db(f"sqlite:///./payout_future_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        ready = make_commission(db, affiliate=affiliate, status="eligible")
        early = make_commission(db, affiliate=affiliate, status="eligible", eligible_date=utcnow() + timedelta(days=5))
        start, end = _period()
        run = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[ready.id, early.id], period_start=start, period_end=end)

        result = approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id)

        assert result.paid_ids == [ready.id]
        assert result.detached_ids == [early.id]
        assert _statuses(db, [ready.id, early.id]) == {ready.id: "paid", early.id: "eligible"}
        later = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[early.id], period_start=start, period_end=end)
        assert list_run_commission_ids(db, run_id=later.id) == [early.id]


def test_run_with_no_payable_member_is_refused_and_can_be_cancelled():
    SessionLocal = _setup_db(f"sqlite:///./payout_cancel_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        commission = make_commission(db, affiliate=affiliate, status="eligible")
        start, end = _period()
        run = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[commission.id], period_start=start, period_end=end)
        reject_commissions(db, shop_id=SHOP_ID, commission_ids=[commission.id])

        with pytest.raises(InvalidTransitionError) as excinfo:
            approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id)
        assert excinfo.value.commission_ids == [commission.id]
        assert db.get(PayoutRun, run.id).status == "draft"

        with pytest.raises(NotFoundError):
            cancel_payout_run(db, shop_id="shop-b", run_id=run.id)
        run_id = run.id
        assert cancel_payout_run(db, shop_id=SHOP_ID, run_id=run_id) == [commission.id]
        assert db.get(PayoutRun, run_id) is None
        assert list_run_commission_ids(db, run_id=run_id) == []


def test_cancelling_a_draft_run_frees_members_and_paid_runs_stay():
    SessionLocal = _setup_db(f"sqlite:///./payout_cancel_release_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        first = make_commission(db, affiliate=affiliate, status="approved")
        second = make_commission(db, affiliate=affiliate, status="approved")
        start, end = _period()
        draft = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[first.id], period_start=start, period_end=end)
        paid = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[second.id], period_start=start, period_end=end)
        approve_payout_run(db, shop_id=SHOP_ID, run_id=paid.id)

        with pytest.raises(InvalidTransitionError):
            cancel_payout_run(db, shop_id=SHOP_ID, run_id=paid.id)

        cancel_payout_run(db, shop_id=SHOP_ID, run_id=draft.id)
        rebuilt = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[first.id], period_start=start, period_end=end)
        assert list_run_commission_ids(db, run_id=rebuilt.id) == [first.id]


def test_fraud_flag_blocks_run_approval():
    SessionLocal = _setup_db(f"sqlite:///./payout_fraud_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        commission = make_commission(db, affiliate=affiliate, status="approved")
        start, end = _period()
        run = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[commission.id], period_start=start, period_end=end)
        create_manual_flag(db, shop_id=SHOP_ID, commission_id=commission.id, flag_type="self_referral", score=80)

        with pytest.raises(FraudBlockedError):
            approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id)
        assert db.get(PayoutRun, run.id).status == "draft"


def test_run_builder_rejects_pending_and_double_batched_commissions():
    SessionLocal = _setup_db(f"sqlite:///./payout_builder_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        pending = make_commission(db, affiliate=affiliate, status="pending")
        eligible = make_commission(db, affiliate=affiliate, status="eligible")
        start, end = _period()

        with pytest.raises(InvalidTransitionError):
            create_payout_run(db, shop_id=SHOP_ID, commission_ids=[pending.id], period_start=start, period_end=end)

        create_payout_run(db, shop_id=SHOP_ID, commission_ids=[eligible.id], period_start=start, period_end=end)
        with pytest.raises(ValidationFailedError):
            create_payout_run(db, shop_id=SHOP_ID, commission_ids=[eligible.id], period_start=start, period_end=end)

        with pytest.raises(ValidationFailedError):
            create_payout_run(db, shop_id=SHOP_ID, commission_ids=[eligible.id], period_start=end, period_end=start)


def test_paid_run_cannot_be_approved_twice():
    SessionLocal = _setup_db(f"sqlite:///./payout_twice_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db))
        commission = make_commission(db, affiliate=affiliate, status="eligible")
        start, end = _period()
        run = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[commission.id], period_start=start, period_end=end)
        approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id)

        with pytest.raises(InvalidTransitionError):
            approve_payout_run(db, shop_id=SHOP_ID, run_id=run.id)

        runs = list_payout_runs(db, shop_id=SHOP_ID)
        assert [(listed.id, count) for listed, count in runs] == [(run.id, 1)]


def test_pay_now_submits_then_records_a_paid_run():
    SessionLocal = _setup_db(f"sqlite:///./payout_pay_now_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db), payout_method="paypal", payout_identifier="partner@paypal.test")
        first = make_commission(db, affiliate=affiliate, status="approved", amount="12.00")
        second = make_commission(db, affiliate=affiliate, status="eligible", amount="3.00")
        provider = FakeProvider()

        result = pay_now(db, shop_id=SHOP_ID, affiliate_id=affiliate.id, commission_ids=[first.id, second.id], provider=provider)

        items, batch_id = provider.submitted[0]
        assert {item.receiver for item in items} == {"partner@paypal.test"}
        assert batch_id.startswith(f"PAYOUT_{affiliate.id}_")
        assert result.run.status == "paid"
        assert result.run.payout_reference == "BATCH-123"
        assert result.total_amount == Decimal("15.00")
        assert set(_statuses(db, [first.id, second.id]).values()) == {"paid"}


def test_pay_now_provider_failure_changes_nothing():
    SessionLocal = _setup_db(f"sqlite:///./payout_pay_now_fail_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db), payout_identifier="partner@paypal.test")
        commission = make_commission(db, affiliate=affiliate, status="approved")

        with pytest.raises(PayoutProviderError) as excinfo:
            pay_now(db, shop_id=SHOP_ID, affiliate_id=affiliate.id, commission_ids=[commission.id], provider=FakeProvider(fail=True))

        assert excinfo.value.provider_status == 422
        assert _statuses(db, [commission.id]) == {commission.id: "approved"}
        assert db.query(PayoutRun).count() == 0


def test_pay_now_requires_payout_identifier_and_ownership():
    SessionLocal = _setup_db(f"sqlite:///./payout_pay_now_checks_{uuid4().hex}.db")
    with SessionLocal() as db:
        offer = make_offer(db)
        no_identifier = make_affiliate(db, offer=offer)
        owner = make_affiliate(db, offer=offer, payout_identifier="owner@paypal.test")
        stranger = make_affiliate(db, offer=offer, payout_identifier="stranger@paypal.test")
        commission = make_commission(db, affiliate=owner, status="approved")

        with pytest.raises(ValidationFailedError):
            pay_now(db, shop_id=SHOP_ID, affiliate_id=no_identifier.id, commission_ids=[commission.id], provider=FakeProvider())
        with pytest.raises(ValidationFailedError):
            pay_now(db, shop_id=SHOP_ID, affiliate_id=stranger.id, commission_ids=[commission.id], provider=FakeProvider())


def test_refresh_pulls_provider_batch_status():
    SessionLocal = _setup_db(f"sqlite:///./payout_refresh_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db), payout_identifier="partner@paypal.test")
        commission = make_commission(db, affiliate=affiliate, status="approved")
        result = pay_now(db, shop_id=SHOP_ID, affiliate_id=affiliate.id, commission_ids=[commission.id], provider=FakeProvider())

        run = refresh_payout_run_status(db, shop_id=SHOP_ID, run_id=result.run.id, provider=FakeProvider(status="SUCCESS"))

        assert run.provider_status == "SUCCESS"


def test_pay_now_refuses_commissions_held_by_a_draft_run():
    SessionLocal = _setup_db(f"sqlite:///./payout_pay_now_draft_{uuid4().hex}.db")
    with SessionLocal() as db:
        affiliate = make_affiliate(db, offer=make_offer(db), payout_identifier="partner@paypal.test")
        commission = make_commission(db, affiliate=affiliate, status="approved")
        start, end = _period()
        draft = create_payout_run(db, shop_id=SHOP_ID, commission_ids=[commission.id], period_start=start, period_end=end)
        provider = FakeProvider()

        with pytest.raises(ValidationFailedError):
            pay_now(db, shop_id=SHOP_ID, affiliate_id=affiliate.id, commission_ids=[commission.id], provider=provider)

        assert provider.submitted == []
        assert _statuses(db, [commission.id]) == {commission.id: "approved"}
        assert db.query(PayoutRun).count() == 1

        cancel_payout_run(db, shop_id=SHOP_ID, run_id=draft.id)
        result = pay_now(db, shop_id=SHOP_ID, affiliate_id=affiliate.id, commission_ids=[commission.id], provider=provider)
        assert result.paid_ids == [commission.id]
        assert list_run_commission_ids(db, run_id=result.run.id) == [commission.id]


def test_upcoming_payouts_group_payable_commissions_past_their_eligible_date():
    SessionLocal = _setup_db(f"sqlite:///./payout_upcoming_{uuid4().hex}.db")
    with SessionLocal() as db:
        offer = make_offer(db)
        small = make_affiliate(db, offer=offer)
        large = make_affiliate(db, offer=offer)
        first = make_commission(db, affiliate=small, status="eligible", amount="10.00")
        second = make_commission(db, affiliate=small, status="approved", amount="5.00")
        later = make_commission(db, affiliate=small, status="eligible", eligible_date=utcnow() + timedelta(days=3))
        make_commission(db, affiliate=small, status="pending")
        make_commission(db, affiliate=small, status="paid")
        big = make_commission(db, affiliate=large, status="eligible", amount="20.00")

        upcoming = upcoming_payouts(db, shop_id=SHOP_ID)

        assert [payout.affiliate.id for payout in upcoming] == [large.id, small.id]
        assert [payout.total_amount for payout in upcoming] == [Decimal("20.00"), Decimal("15.00")]
        assert [commission.id for commission in upcoming[0].commissions] == [big.id]
        assert {commission.id for commission in upcoming[1].commissions} == {first.id, second.id}
        assert upcoming_payouts(db, shop_id="shop-b") == []

        ahead = upcoming_payouts(db, shop_id=SHOP_ID, as_of=utcnow() + timedelta(days=5))
        assert [payout.affiliate.id for payout in ahead] == [small.id, large.id]
        assert [commission.id for commission in ahead[0].commissions][-1] == later.id
