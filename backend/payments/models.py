# module backend.payments.models
"""
Modèles de la feature 'payments'.
- PaymentRecord: enregistrement local d'un paiement (acompte ou solde) lié à un devis.
- CheckoutSession: résultat de la création d'une session hébergée par le processeur.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class PaymentType(str, Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class PaymentRecord:
    id: str
    quote_id: str
    type: PaymentType
    amount: Decimal
    status: PaymentStatus
    processor_reference: str
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PaymentRecord":
        def dt(v):
            if not v or isinstance(v, datetime):
                return v or None
            return datetime.fromisoformat(str(v).replace("Z", "+00:00"))

        return cls(
            id=str(row["id"]),
            quote_id=str(row.get("quote_id") or ""),
            type=PaymentType(row.get("type") or "deposit"),
            amount=Decimal(str(row.get("amount") or "0")),
            status=PaymentStatus(row.get("status") or "pending"),
            processor_reference=str(row.get("processor_reference") or ""),
            paid_at=dt(row.get("paid_at")),
            created_at=dt(row.get("created_at")),
        )

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "type": self.type.value,
            "amount": f"{self.amount:.2f}",
            "status": self.status.value,
            "processor_reference": self.processor_reference,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(frozen=True)
class CheckoutSession:
    url: str
    session_id: str
    # True en mode dégradé (aucune clé Stripe): l'URL ne mène à aucun paiement réel
    placeholder: bool = False


class CheckoutRequest(BaseModel):
    quote_id: str = Field(min_length=1)
