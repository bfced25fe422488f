from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class EngineError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFoundError(EngineError):
    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            code="not_found",
            message=f"{entity} {entity_id} not found",
            status_code=404,
        )
        self.entity = entity
        self.entity_id = entity_id

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["entity"] = self.entity
        return payload


class ValidationFailedError(EngineError):
    def __init__(self, message: str) -> None:
        super().__init__(code="validation_failed", message=message, status_code=422)


class FraudBlockedError(EngineError):
    def __init__(self, commission_ids, action: str) -> None:
        self.commission_ids = sorted(set(commission_ids))
        super().__init__(
            code="fraud_blocked",
            message=f"Cannot {action} commissions with unresolved fraud flags",
            status_code=409,
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["fraud_commission_ids"] = self.commission_ids
        return payload


class InvalidTransitionError(EngineError):
    def __init__(
        self,
        commission_ids,
        *,
        to_status: str,
        reason: str,
        from_status: str | None = None,
    ) -> None:
        self.commission_ids = sorted(set(commission_ids))
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(code="invalid_transition", message=reason, status_code=409)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["commission_ids"] = self.commission_ids
        payload["to_status"] = self.to_status
        if self.from_status:
            payload["from_status"] = self.from_status
        return payload


class PayoutProviderError(EngineError):
    def __init__(self, message: str, *, provider_status: int | None = None) -> None:
        super().__init__(code="payout_provider_failed", message=message, status_code=502)
        self.provider_status = provider_status

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.provider_status is not None:
            payload["provider_status"] = self.provider_status
        return payload
