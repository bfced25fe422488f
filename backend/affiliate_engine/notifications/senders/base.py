from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class DeliveryResult:
    commission_id: int
    event: str
    ok: bool
    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "commission_id": self.commission_id,
            "event": self.event,
            "ok": self.ok,
            "sent": self.sent,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class PostbackSender:
    def fire_postback(self, commission_id: int, event: str, scope: str) -> DeliveryResult:
        raise NotImplementedError
