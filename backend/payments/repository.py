"""
Accès aux données pour la feature 'payments' (table payments).
- processor_reference (id de session/intent Stripe) est la clé de jointure du webhook.
- Les transitions de statut sont conditionnelles: succeeded n'est écrit qu'une fois.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
import logging

from supabase import Client

from backend.errors import PersistenceError
from backend.infra.supabase_client import to_db_row
from backend.payments.models import PaymentRecord, PaymentStatus, PaymentType

logger = logging.getLogger(__name__)

PAYMENTS = "payments"

# module backend.payments.repository
class PaymentRepository:
    def __init__(self, client: Client):
        self.client = client

    def _run(self, action: str, query, **ctx):
        try:
            return query.execute()
        except Exception as e:
            logger.exception("payments.repository.%s failed %s", action, ctx)
            raise PersistenceError(f"Erreur de stockage ({action})") from e

    def create_pending(
        self,
        *,
        payment_id: str,
        quote_id: str,
        amount: Decimal,
        processor_reference: Optional[str] = None,
        type: PaymentType = PaymentType.DEPOSIT,
    ) -> PaymentRecord:
        """Enregistrement 'pending'; la référence processeur peut être rattachée plus tard (attach_reference)."""
        row = to_db_row({
            "id": payment_id,
            "quote_id": quote_id,
            "type": type,
            "amount": amount,
            "status": PaymentStatus.PENDING,
            "processor_reference": processor_reference,
            "created_at": datetime.now(timezone.utc),
        })
        res = self._run("create_pending", self.client.table(PAYMENTS).insert(row), quote_id=quote_id)
        rows = res.data or []
        if not rows:
            raise PersistenceError("Erreur lors de la création du paiement")
        return PaymentRecord.from_row(rows[0])

    def get(self, payment_id: str) -> Optional[PaymentRecord]:
        res = self._run("get", self.client.table(PAYMENTS).select("*").eq("id", payment_id).limit(1), payment_id=payment_id)
        rows = res.data or []
        return PaymentRecord.from_row(rows[0]) if rows else None

    def attach_reference(self, payment_id: str, processor_reference: str) -> Optional[PaymentRecord]:
        """Renseigne la référence processeur si elle est encore vide. None si déjà rattachée."""
        res = self._run(
            "attach_reference",
            self.client.table(PAYMENTS)
            .update({"processor_reference": processor_reference})
            .eq("id", payment_id)
            .is_("processor_reference", "null"),
            payment_id=payment_id,
        )
        rows = res.data or []
        return PaymentRecord.from_row(rows[0]) if rows else None

    def find_by_reference(self, processor_reference: str) -> Optional[PaymentRecord]:
        """
        Paiement par référence processeur. L'unicité n'est pas garantie en base:
        en cas de doublon, le plus ancien est retenu et l'anomalie journalisée.
        """
        res = self._run(
            "find_by_reference",
            self.client.table(PAYMENTS).select("*").eq("processor_reference", processor_reference).order("created_at"),
            reference=processor_reference,
        )
        rows = res.data or []
        if len(rows) > 1:
            logger.warning("payments.repository duplicate processor_reference=%s count=%s", processor_reference, len(rows))
        return PaymentRecord.from_row(rows[0]) if rows else None

    def find_pending_deposit(self, quote_id: str) -> Optional[PaymentRecord]:
        res = self._run(
            "find_pending_deposit",
            self.client.table(PAYMENTS)
            .select("*")
            .eq("quote_id", quote_id)
            .eq("type", PaymentType.DEPOSIT.value)
            .eq("status", PaymentStatus.PENDING.value)
            .order("created_at", desc=True)
            .limit(1),
            quote_id=quote_id,
        )
        rows = res.data or []
        return PaymentRecord.from_row(rows[0]) if rows else None

    def list_for_quote(self, quote_id: str) -> List[PaymentRecord]:
        res = self._run(
            "list_for_quote",
            self.client.table(PAYMENTS).select("*").eq("quote_id", quote_id).order("created_at"),
            quote_id=quote_id,
        )
        return [PaymentRecord.from_row(r) for r in res.data or []]

    def mark_succeeded(self, payment_id: str, paid_at: datetime) -> Optional[PaymentRecord]:
        """pending|failed -> succeeded. None si déjà succeeded (livraison en double)."""
        res = self._run(
            "mark_succeeded",
            self.client.table(PAYMENTS)
            .update(to_db_row({"status": PaymentStatus.SUCCEEDED, "paid_at": paid_at}))
            .eq("id", payment_id)
            .neq("status", PaymentStatus.SUCCEEDED.value),
            payment_id=payment_id,
        )
        rows = res.data or []
        return PaymentRecord.from_row(rows[0]) if rows else None

    def mark_failed(self, payment_id: str) -> Optional[PaymentRecord]:
        """pending -> failed. Un paiement réussi n'est jamais rétrogradé."""
        res = self._run(
            "mark_failed",
            self.client.table(PAYMENTS)
            .update({"status": PaymentStatus.FAILED.value})
            .eq("id", payment_id)
            .eq("status", PaymentStatus.PENDING.value),
            payment_id=payment_id,
        )
        rows = res.data or []
        return PaymentRecord.from_row(rows[0]) if rows else None
