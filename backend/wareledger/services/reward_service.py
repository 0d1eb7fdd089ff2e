# Overview: Reward-point earning, redemption, refund and expiry.

"""
Reward point rules

- A completed sale with a customer earns floor(grand_total / per_point_amount)
  points once grand_total reaches minimum_amount.
- Earned points expire after expiry_duration days/months/years when set.
- Spending and expiry consume credit entries first-in first-out, ordered by
  expiry date; Customer.points always equals the unspent, unexpired credit.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, Decimal
from typing import Optional

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..amounts import ZERO, QUANTITY_QUANTUM, db_decimal, decimal_str, to_decimal, to_quantity
from ..errors import FundingSourceError, NotFoundError, ValidationError
from ..models import Customer, Document, RewardPoint
from ..models.customers import (
    REWARD_CREDIT_TYPES,
    REWARD_EARN,
    REWARD_EXPIRE,
    REWARD_REDEEM,
    REWARD_REFUND,
    REWARD_REVERSAL,
)
from ..settings import EngineSettings, RewardPointPolicy, resolve_settings
from ..time_utils import add_months, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .event_service import append_event


def _expiry_for(policy: RewardPointPolicy, now: datetime) -> Optional[datetime]:
    if not policy.expiry_duration or not policy.expiry_type:
        return None
    if policy.expiry_type == "days":
        return now + timedelta(days=policy.expiry_duration)
    if policy.expiry_type == "months":
        return datetime.combine(add_months(now.date(), policy.expiry_duration), now.time())
    return datetime.combine(add_months(now.date(), 12 * policy.expiry_duration), now.time())


def points_for_amount(amount, policy: RewardPointPolicy) -> Decimal:
    amount = to_decimal(amount)
    if amount < policy.minimum_amount or amount <= 0:
        return ZERO
    return (amount / policy.per_point_amount).to_integral_value(rounding=ROUND_FLOOR)


def _credit_customer(customer_id: int, points: Decimal) -> None:
    db.session.execute(
        update(Customer).where(Customer.id == customer_id).values(points=Customer.points + points),
        execution_options={"synchronize_session": "fetch"},
    )


def _debit_customer(customer_id: int, points: Decimal) -> bool:
    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.points >= points)
        .values(points=Customer.points - points),
        execution_options={"synchronize_session": "fetch"},
    )
    return bool(result.rowcount)


def _open_credits(customer_id: int, *, now: datetime, include_expired: bool = False) -> list[RewardPoint]:
    query = db.session.query(RewardPoint).filter(
        RewardPoint.customer_id == customer_id,
        RewardPoint.entry_type.in_(REWARD_CREDIT_TYPES),
        RewardPoint.points > RewardPoint.deducted_points,
    )
    if not include_expired:
        query = query.filter((RewardPoint.expired_at.is_(None)) | (RewardPoint.expired_at > now))
    entries = lock_for_update(query).all()
    entries.sort(key=lambda e: (e.expired_at is None, e.expired_at or datetime.max, e.id))
    return entries


def _consume_fifo(customer_id: int, points: Decimal, *, now: datetime) -> None:
    remaining = points
    for entry in _open_credits(customer_id, now=now):
        if remaining <= 0:
            break
        take = min(entry.remaining, remaining)
        entry.deducted_points = db_decimal(entry.deducted_points) + take
        remaining -= take


def _expire_customer_locked(customer_id: int, now: datetime) -> Decimal:
    expired_total = ZERO
    entries = (
        db.session.query(RewardPoint)
        .filter(
            RewardPoint.customer_id == customer_id,
            RewardPoint.entry_type.in_(REWARD_CREDIT_TYPES),
            RewardPoint.expired_at.isnot(None),
            RewardPoint.expired_at <= now,
            RewardPoint.points > RewardPoint.deducted_points,
        )
        .all()
    )
    for entry in entries:
        left = to_quantity(entry.remaining)
        if left <= 0:
            continue
        entry.deducted_points = entry.points
        expired_total += left
    if expired_total > 0:
        customer = db.session.get(Customer, customer_id)
        debit = min(expired_total, db_decimal(customer.points))
        _credit_customer(customer_id, -debit)
        db.session.add(
            RewardPoint(
                customer_id=customer_id,
                entry_type=REWARD_EXPIRE,
                points=-expired_total,
                deducted_points=0,
                note="Expired points",
            )
        )
        db.session.flush()
    return expired_total


def earn_for_sale(document: Document, *, settings: EngineSettings, user_id: int | None = None) -> Optional[RewardPoint]:
    """Credit points for a completed sale inside the caller's transaction."""
    policy = settings.reward_points
    if not policy.enabled or document.customer_id is None:
        return None
    points = points_for_amount(db_decimal(document.grand_total), policy)
    if points <= 0:
        return None

    now = utcnow()
    entry = RewardPoint(
        customer_id=document.customer_id,
        entry_type=REWARD_EARN,
        points=points,
        deducted_points=0,
        expired_at=_expiry_for(policy, now),
        document_id=document.id,
        note=f"Earned on {document.reference_no}",
    )
    db.session.add(entry)
    _credit_customer(document.customer_id, points)
    db.session.flush()
    append_event(
        event_type="reward.points_earned",
        event_category="reward",
        entity_type="customer",
        entity_id=document.customer_id,
        actor_user_id=user_id,
        document_id=document.id,
        payload={"points": decimal_str(points)},
    )
    return entry


def reverse_earned_for_sale(document: Document, *, user_id: int | None = None) -> Decimal:
    """Take back whatever is left unspent of the points a sale earned."""
    entries = db.session.query(RewardPoint).filter_by(document_id=document.id, entry_type=REWARD_EARN).all()
    taken = ZERO
    for entry in entries:
        left = to_quantity(entry.remaining)
        if left <= 0:
            continue
        entry.deducted_points = entry.points
        taken += left
    if taken > 0:
        _credit_customer(document.customer_id, -taken)
        db.session.add(
            RewardPoint(
                customer_id=document.customer_id,
                entry_type=REWARD_REVERSAL,
                points=-taken,
                deducted_points=0,
                document_id=document.id,
                note=f"Reversed with {document.reference_no}",
            )
        )
        db.session.flush()
    return taken


def redeem_for_payment(
    customer_id: int,
    amount,
    *,
    settings: EngineSettings,
    document_id: int | None = None,
) -> Decimal:
    """
    Debit the points worth `amount` inside the caller's transaction.

    Returns the number of points spent. Raises FundingSourceError when the
    customer does not hold enough.
    """
    policy = settings.reward_points
    if not policy.enabled:
        raise FundingSourceError("Reward points are not enabled")
    if customer_id is None:
        raise ValidationError("Reward point payments need a customer")
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found")

    points = (to_decimal(amount) / policy.redeem_value).quantize(QUANTITY_QUANTUM)
    now = utcnow()
    _expire_customer_locked(customer_id, now)
    if not _debit_customer(customer_id, points):
        raise FundingSourceError(
            "Not enough reward points",
            details={"customer_id": customer_id, "points_needed": decimal_str(points)},
        )
    _consume_fifo(customer_id, points, now=now)
    db.session.add(
        RewardPoint(
            customer_id=customer_id,
            entry_type=REWARD_REDEEM,
            points=-points,
            deducted_points=0,
            document_id=document_id,
        )
    )
    db.session.flush()
    return points


def refund_points(customer_id: int, points, *, payment_id: int | None = None, document_id: int | None = None) -> RewardPoint:
    """Credit back points spent on a reversed payment; refunded points do not expire."""
    points = to_quantity(points)
    entry = RewardPoint(
        customer_id=customer_id,
        entry_type=REWARD_REFUND,
        points=points,
        deducted_points=0,
        payment_id=payment_id,
        document_id=document_id,
        note="Refunded on payment reversal",
    )
    db.session.add(entry)
    _credit_customer(customer_id, points)
    db.session.flush()
    return entry


def expire_reward_points(now: Optional[datetime] = None, *, settings: EngineSettings | None = None) -> dict:
    """Expire every credit entry past its expiry date. Returns totals per customer."""
    settings = resolve_settings(settings)
    now = now or utcnow()

    def _op():
        begin_write()
        customer_ids = [
            cid
            for (cid,) in db.session.query(RewardPoint.customer_id)
            .filter(
                RewardPoint.entry_type.in_(REWARD_CREDIT_TYPES),
                RewardPoint.expired_at.isnot(None),
                RewardPoint.expired_at <= now,
                RewardPoint.points > RewardPoint.deducted_points,
            )
            .distinct()
            .all()
        ]
        expired = {}
        for customer_id in customer_ids:
            total = _expire_customer_locked(customer_id, now)
            if total > 0:
                expired[customer_id] = decimal_str(total)
                append_event(
                    event_type="reward.points_expired",
                    event_category="reward",
                    entity_type="customer",
                    entity_id=customer_id,
                    payload={"points": decimal_str(total)},
                )
        db.session.commit()
        if expired:
            current_app.logger.info("Expired reward points for %s customer(s)", len(expired))
        return expired

    return run_with_retry(_op, settings=settings)


def customer_points(customer_id: int) -> Decimal:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return to_quantity(db_decimal(customer.points))
