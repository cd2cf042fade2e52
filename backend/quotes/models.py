# module backend.quotes.models
"""
Modèles de la feature 'quotes'.
- Énumérations de statut (devis, acompte) et des moyens de paiement manuels.
- QuoteLine / QuoteCreate / QuoteUpdate: entrées validées par pydantic. Aucun total n'y figure:
  les montants sont toujours recalculés côté serveur.
- Quote: vue typée d'une ligne de la table 'quotes' (montants en Decimal).
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_VAT_RATES = (Decimal("0"), Decimal("5.5"), Decimal("10"), Decimal("20"))
# Bornes d'une ligne: au-delà, les totaux ne tiennent plus dans la précision monétaire
MAX_QUANTITY = Decimal("1000000")
MAX_UNIT_PRICE_HT = Decimal("100000000")


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    DEPOSIT_PAID = "deposit_paid"
    COMPLETED = "completed"
    CANCELED = "canceled"


class DepositStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class DepositMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "DepositMethod":
        """Accepte aussi les libellés historiques (virement, cheque, autre)."""
        raw = str(value or "").strip().lower()
        aliases = {"virement": cls.BANK_TRANSFER, "cheque": cls.CHECK, "chèque": cls.CHECK, "autre": cls.OTHER}
        if raw in aliases:
            return aliases[raw]
        return cls(raw)


class QuoteLine(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    description: str = Field(min_length=1, max_length=500)
    quantity: Decimal = Field(gt=0, le=MAX_QUANTITY, decimal_places=3)
    unit_price_ht: Decimal = Field(ge=0, le=MAX_UNIT_PRICE_HT, decimal_places=4)
    vat_rate: Decimal = Decimal("20")

    @field_validator("description")
    @classmethod
    def _strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("La description est requise")
        return v

    @field_validator("vat_rate")
    @classmethod
    def _check_vat_rate(cls, v: Decimal) -> Decimal:
        if v not in ALLOWED_VAT_RATES:
            allowed = ", ".join(str(r) for r in ALLOWED_VAT_RATES)
            raise ValueError(f"Taux de TVA invalide. Taux acceptés: {allowed}")
        return v


class QuoteCreate(BaseModel):
    """Corps de POST /quotes. Les totaux éventuellement fournis sont ignorés."""
    model_config = ConfigDict(extra="ignore")

    client_id: str = Field(min_length=1)
    items: List[QuoteLine] = Field(min_length=1)
    deposit_percent: Optional[Decimal] = None
    notes: Optional[str] = None


class QuoteUpdate(BaseModel):
    """Corps de PATCH /quotes/{id}: uniquement les champs éditables d'un brouillon."""
    model_config = ConfigDict(extra="ignore")

    items: Optional[List[QuoteLine]] = Field(default=None, min_length=1)
    deposit_percent: Optional[Decimal] = None
    notes: Optional[str] = None
    expires_at: Optional[datetime] = None


class SignRequest(BaseModel):
    signature: str = Field(min_length=1)


class DepositRequest(BaseModel):
    method: str


def _money(v: Any) -> Decimal:
    if v is None or v == "":
        return Decimal("0.00")
    return Decimal(str(v))


def _dt(v: Any) -> Optional[datetime]:
    if not v:
        return None
    if isinstance(v, datetime):
        return v
    return datetime.fromisoformat(str(v).replace("Z", "+00:00"))


@dataclass
class Quote:
    id: str
    user_id: str
    client_id: str
    quote_number: str
    status: QuoteStatus
    total_ht: Decimal
    total_vat: Decimal
    total_ttc: Decimal
    deposit_percent: Decimal
    deposit_amount: Decimal
    deposit_status: DepositStatus
    deposit_paid_at: Optional[datetime] = None
    deposit_method: Optional[DepositMethod] = None
    signature_ref: Optional[str] = None
    signed_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    payment_link_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    lines: List[QuoteLine] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Dict[str, Any], lines: Optional[List[Dict[str, Any]]] = None) -> "Quote":
        method = row.get("deposit_method")
        return cls(
            id=str(row["id"]),
            user_id=str(row.get("user_id") or ""),
            client_id=str(row.get("client_id") or ""),
            quote_number=row.get("quote_number") or "",
            status=QuoteStatus(row.get("status") or "draft"),
            total_ht=_money(row.get("total_ht")),
            total_vat=_money(row.get("total_vat")),
            total_ttc=_money(row.get("total_ttc")),
            deposit_percent=_money(row.get("deposit_percent")),
            deposit_amount=_money(row.get("deposit_amount")),
            deposit_status=DepositStatus(row.get("deposit_status") or "pending"),
            deposit_paid_at=_dt(row.get("deposit_paid_at")),
            deposit_method=DepositMethod(method) if method else None,
            signature_ref=row.get("signature_ref"),
            signed_at=_dt(row.get("signed_at")),
            sent_at=_dt(row.get("sent_at")),
            payment_link_url=row.get("payment_link_url"),
            expires_at=_dt(row.get("expires_at")),
            notes=row.get("notes"),
            created_at=_dt(row.get("created_at")),
            updated_at=_dt(row.get("updated_at")),
            lines=[QuoteLine(**ln) for ln in (lines or [])],
        )

    @property
    def deposit_is_paid(self) -> bool:
        return self.deposit_status == DepositStatus.PAID

    def to_public(self) -> Dict[str, Any]:
        """Représentation JSON renvoyée par l'API."""
        def iso(d: Optional[datetime]) -> Optional[str]:
            return d.isoformat() if d else None

        return {
            "id": self.id,
            "quote_number": self.quote_number,
            "client_id": self.client_id,
            "status": self.status.value,
            "total_ht": f"{self.total_ht:.2f}",
            "total_vat": f"{self.total_vat:.2f}",
            "total_ttc": f"{self.total_ttc:.2f}",
            "deposit_percent": f"{self.deposit_percent:.2f}",
            "deposit_amount": f"{self.deposit_amount:.2f}",
            "deposit_status": self.deposit_status.value,
            "deposit_paid_at": iso(self.deposit_paid_at),
            "deposit_method": self.deposit_method.value if self.deposit_method else None,
            "signature_ref": self.signature_ref,
            "signed_at": iso(self.signed_at),
            "sent_at": iso(self.sent_at),
            "payment_link_url": self.payment_link_url,
            "expires_at": iso(self.expires_at),
            "notes": self.notes,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "items": [
                {
                    "description": ln.description,
                    "quantity": str(ln.quantity),
                    "unit_price_ht": str(ln.unit_price_ht),
                    "vat_rate": str(ln.vat_rate),
                }
                for ln in self.lines
            ],
        }
