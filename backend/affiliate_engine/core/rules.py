"""
Commission rules as a closed set of variants, and the point-in-time offer
snapshot stored on every commission.

A rule is either ``FlatRate`` (a fixed currency amount per payment) or
``Percentage`` (a share of the order subtotal). Amounts are ``Decimal`` and
results are rounded half-up to the currency's minor unit.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Union

from affiliate_engine.models.enums import CommissionTypeEnum


CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid monetary amount: {value!r}") from exc
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FlatRate:
    amount: Decimal

    @property
    def commission_type(self) -> str:
        return CommissionTypeEnum.FLAT_RATE.value

    def compute(self, subtotal: Decimal) -> Decimal:
        return to_money(self.amount)


@dataclass(frozen=True)
class Percentage:
    amount: Decimal

    @property
    def commission_type(self) -> str:
        return CommissionTypeEnum.PERCENTAGE.value

    def compute(self, subtotal: Decimal) -> Decimal:
        raw = Decimal(str(subtotal)) * Decimal(str(self.amount)) / Decimal(100)
        return raw.quantize(CENT, rounding=ROUND_HALF_UP)


CommissionRule = Union[FlatRate, Percentage]


def build_rule(commission_type: str | None, amount: Any) -> CommissionRule | None:
    if commission_type is None or amount is None:
        return None
    value = Decimal(str(amount))
    if commission_type == CommissionTypeEnum.FLAT_RATE.value:
        return FlatRate(amount=value)
    if commission_type == CommissionTypeEnum.PERCENTAGE.value:
        return Percentage(amount=value)
    raise ValueError(f"Unknown commission type: {commission_type}")


@dataclass(frozen=True)
class OfferSnapshot:
    offer_id: int
    offer_name: str
    commission_type: str
    amount: str
    currency: str
    selling_subscriptions: str
    subscription_max_payments: int | None
    subscription_rebill_commission_type: str | None
    subscription_rebill_commission_value: str | None
    is_initial_payment: bool
    rebill_sequence: int
    applied_rule_type: str
    applied_rule_amount: str

    @classmethod
    def capture(cls, offer, *, rule: CommissionRule, is_initial_payment: bool, rebill_sequence: int) -> "OfferSnapshot":
        rebill_value = offer.subscription_rebill_commission_value
        return cls(
            offer_id=offer.id,
            offer_name=offer.name,
            commission_type=offer.commission_type,
            amount=str(to_money(offer.amount)),
            currency=offer.currency,
            selling_subscriptions=offer.selling_subscriptions,
            subscription_max_payments=offer.subscription_max_payments,
            subscription_rebill_commission_type=offer.subscription_rebill_commission_type,
            subscription_rebill_commission_value=str(to_money(rebill_value)) if rebill_value is not None else None,
            is_initial_payment=is_initial_payment,
            rebill_sequence=rebill_sequence,
            applied_rule_type=rule.commission_type,
            applied_rule_amount=str(to_money(rule.amount)),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
