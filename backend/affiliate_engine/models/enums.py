from enum import Enum

# Stored as plain strings (native enums disabled for easier evolution).


class AffiliateStatusEnum(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REJECTED = "rejected"


class CommissionTypeEnum(str, Enum):
    FLAT_RATE = "flat_rate"
    PERCENTAGE = "percentage"


class SellingSubscriptionsEnum(str, Enum):
    # "no" and "credit_none" both withhold rebill commissions.
    NO = "no"
    CREDIT_ALL = "credit_all"
    CREDIT_NONE = "credit_none"
    CREDIT_FIRST_ONLY = "credit_first_only"


class AttributionTypeEnum(str, Enum):
    LINK = "link"
    COUPON = "coupon"
    FINGERPRINT = "fingerprint"


class CommissionStatusEnum(str, Enum):
    PENDING = "pending"
    ELIGIBLE = "eligible"
    APPROVED = "approved"
    PAID = "paid"
    REVERSED = "reversed"


class PayoutRunStatusEnum(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    PAID = "paid"


class FraudFlagTypeEnum(str, Enum):
    SELF_REFERRAL = "self_referral"
    EXCESSIVE_CLICKS = "excessive_clicks"
    HIGH_REFUND_RATE = "high_refund_rate"
    COUPON_ABUSE = "coupon_abuse"
    VELOCITY_ANOMALY = "velocity_anomaly"
    MANUAL = "manual"


class PostbackEventEnum(str, Enum):
    CONVERSION = "conversion"
    APPROVAL = "approval"
    PAYMENT = "payment"


class PostbackLogStatusEnum(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]
