"""
Accès aux données pour la feature 'quotes' (tables quotes, quote_items, clients).
- Le client Supabase est injecté (service-role); l'appartenance est vérifiée par filtre user_id.
- Les changements d'état passent par update_if(): mise à jour conditionnée à l'état observé.
- Toute erreur de stockage est journalisée puis relevée en PersistenceError.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
import logging

from supabase import Client

from backend.errors import PersistenceError
from backend.infra.supabase_client import to_db_row
from backend.quotes.calculator import QuoteDraft
from backend.quotes.lifecycle import Transition
from backend.quotes.models import DepositStatus, Quote, QuoteLine, QuoteStatus

logger = logging.getLogger(__name__)

QUOTES = "quotes"
QUOTE_ITEMS = "quote_items"
CLIENTS = "clients"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _line_rows(quote_id: str, lines: Iterable[QuoteLine]) -> List[Dict[str, Any]]:
    return [
        {
            "quote_id": quote_id,
            "description": ln.description,
            "quantity": str(ln.quantity),
            "unit_price_ht": str(ln.unit_price_ht),
            "vat_rate": str(ln.vat_rate),
            "sort_order": index,
        }
        for index, ln in enumerate(lines)
    ]

# module backend.quotes.repository
class QuoteRepository:
    def __init__(self, client: Client):
        self.client = client

    def _run(self, action: str, query, **ctx):
        try:
            return query.execute()
        except Exception as e:
            logger.exception("quotes.repository.%s failed %s", action, ctx)
            raise PersistenceError(f"Erreur de stockage ({action})") from e

    # --- Lecture ---

    def get(self, quote_id: str, owner_id: Optional[str] = None, *, with_lines: bool = True) -> Optional[Quote]:
        """Devis par id (et propriétaire si fourni). None si introuvable."""
        query = self.client.table(QUOTES).select("*").eq("id", quote_id)
        if owner_id is not None:
            query = query.eq("user_id", owner_id)
        res = self._run("get", query.limit(1), quote_id=quote_id)
        rows = res.data or []
        if not rows:
            return None
        lines = self.get_lines(quote_id) if with_lines else []
        return Quote.from_row(rows[0], lines)

    def get_lines(self, quote_id: str) -> List[Dict[str, Any]]:
        res = self._run(
            "get_lines",
            self.client.table(QUOTE_ITEMS).select("*").eq("quote_id", quote_id).order("sort_order"),
            quote_id=quote_id,
        )
        return res.data or []

    def list_for_owner(self, owner_id: str, limit: int = 100) -> List[Quote]:
        res = self._run(
            "list_for_owner",
            self.client.table(QUOTES).select("*").eq("user_id", owner_id).order("created_at", desc=True).limit(limit),
            owner_id=owner_id,
        )
        return [Quote.from_row(row) for row in res.data or []]

    def get_client(self, client_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """Fiche client minimale (id, name, email) si elle appartient au propriétaire."""
        res = self._run(
            "get_client",
            self.client.table(CLIENTS).select("id, name, email").eq("id", client_id).eq("user_id", owner_id).limit(1),
            client_id=client_id,
        )
        rows = res.data or []
        return rows[0] if rows else None

    def next_quote_number(self, owner_id: str, year: int) -> str:
        """Format DEV-YYYY-NNN, séquentiel par propriétaire et par année."""
        prefix = f"DEV-{year}-"
        res = self._run(
            "next_quote_number",
            self.client.table(QUOTES).select("id", count="exact").eq("user_id", owner_id).like("quote_number", f"{prefix}%"),
            owner_id=owner_id,
        )
        count = res.count if res.count is not None else len(res.data or [])
        return f"{prefix}{count + 1:03d}"

    # --- Écriture ---

    def insert(
        self,
        *,
        owner_id: str,
        client_id: str,
        quote_number: str,
        draft: QuoteDraft,
        expires_at: datetime,
        notes: Optional[str] = None,
    ) -> Quote:
        """Crée un brouillon. Les totaux proviennent exclusivement du QuoteDraft calculé."""
        now = _now()
        row = to_db_row({
            "user_id": owner_id,
            "client_id": client_id,
            "quote_number": quote_number,
            "status": QuoteStatus.DRAFT,
            "total_ht": draft.totals.total_ht,
            "total_vat": draft.totals.total_vat,
            "total_ttc": draft.totals.total_ttc,
            "deposit_percent": draft.deposit_percent,
            "deposit_amount": draft.deposit_amount,
            "deposit_status": DepositStatus.PENDING,
            "expires_at": expires_at,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        })
        res = self._run("insert", self.client.table(QUOTES).insert(row), owner_id=owner_id)
        rows = res.data or []
        if not rows:
            raise PersistenceError("Erreur lors de la création du devis")
        quote_id = str(rows[0]["id"])
        try:
            self._run("insert_lines", self.client.table(QUOTE_ITEMS).insert(_line_rows(quote_id, draft.lines)), quote_id=quote_id)
        except PersistenceError:
            # Pas de devis sans lignes
            self._run("rollback_insert", self.client.table(QUOTES).delete().eq("id", quote_id), quote_id=quote_id)
            raise
        return Quote.from_row(rows[0], _line_rows(quote_id, draft.lines))

    def _delete_lines(self, action: str, quote_id: str, line_ids: List[str]) -> None:
        if line_ids:
            self._run(action, self.client.table(QUOTE_ITEMS).delete().in_("id", line_ids), quote_id=quote_id)

    def update_draft(self, quote_id: str, draft: QuoteDraft, extra: Optional[Dict[str, Any]] = None) -> Optional[Quote]:
        """
        Remplace lignes et totaux tant que le devis est en brouillon. None si ce n'est plus le cas.
        Ordre: nouvelles lignes, totaux (conditionnel sur 'draft'), suppression des anciennes lignes.
        Un échec défait les étapes déjà faites: les totaux restent ceux des lignes en base.
        """
        patch: Dict[str, Any] = {
            "total_ht": draft.totals.total_ht,
            "total_vat": draft.totals.total_vat,
            "total_ttc": draft.totals.total_ttc,
            "deposit_percent": draft.deposit_percent,
            "deposit_amount": draft.deposit_amount,
        }
        patch.update(extra or {})
        old_ids = [str(r["id"]) for r in self.get_lines(quote_id)]
        previous = self._run("snapshot", self.client.table(QUOTES).select("*").eq("id", quote_id).limit(1), quote_id=quote_id)
        if not previous.data:
            return None
        before = {k: previous.data[0].get(k) for k in patch}

        res = self._run(
            "insert_lines", self.client.table(QUOTE_ITEMS).insert(_line_rows(quote_id, draft.lines)), quote_id=quote_id
        )
        new_ids = [str(r["id"]) for r in res.data or []]
        try:
            updated = self.update_if(quote_id, patch, from_statuses=(QuoteStatus.DRAFT,))
        except PersistenceError:
            self._delete_lines("rollback_lines", quote_id, new_ids)
            raise
        if updated is None:
            self._delete_lines("rollback_lines", quote_id, new_ids)
            return None

        try:
            self._delete_lines("delete_lines", quote_id, old_ids)
        except PersistenceError:
            logger.error("quotes.repository.update_draft rollback quote_id=%s", quote_id)
            self._run("rollback_totals", self.client.table(QUOTES).update(before).eq("id", quote_id), quote_id=quote_id)
            self._delete_lines("rollback_lines", quote_id, new_ids)
            raise
        updated.lines = list(draft.lines)
        return updated

    def update_if(
        self,
        quote_id: str,
        patch: Dict[str, Any],
        *,
        from_statuses: Sequence[QuoteStatus] = (),
        require_deposit_unpaid: bool = False,
    ) -> Optional[Quote]:
        """
        Mise à jour conditionnelle (compare-and-swap côté base):
        - from_statuses: statut courant attendu (filtre IN)
        - require_deposit_unpaid: filtre deposit_status <> 'paid'
        Retourne le devis mis à jour, ou None si aucune ligne ne correspondait encore.
        """
        row = to_db_row({**patch, "updated_at": _now()})
        query = self.client.table(QUOTES).update(row).eq("id", quote_id)
        if from_statuses:
            query = query.in_("status", [s.value for s in from_statuses])
        if require_deposit_unpaid:
            query = query.neq("deposit_status", DepositStatus.PAID.value)
        res = self._run("update_if", query, quote_id=quote_id, fields=sorted(patch))
        rows = res.data or []
        if not rows:
            return None
        return Quote.from_row(rows[0])

    def apply(self, quote_id: str, transition: Transition) -> Optional[Quote]:
        """Applique une Transition de la machine à états (NOOP: rien n'est écrit)."""
        if transition.noop:
            return self.get(quote_id, with_lines=False)
        return self.update_if(
            quote_id,
            transition.patch,
            from_statuses=transition.from_statuses,
            require_deposit_unpaid=transition.require_deposit_unpaid,
        )
