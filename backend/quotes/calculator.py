"""
Calculs financiers purs des devis (pas de DB, pas de Stripe).
- Les montants intermédiaires restent en pleine précision (Decimal).
- Les totaux HT/TVA/TTC sont arrondis une seule fois, au demi supérieur.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, NamedTuple, Tuple, Union

from backend.errors import ValidationError
from backend.quotes.models import QuoteLine

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class QuoteTotals(NamedTuple):
    total_ht: Decimal
    total_vat: Decimal
    total_ttc: Decimal


class LineAmounts(NamedTuple):
    line_ht: Decimal
    line_vat: Decimal
    line_ttc: Decimal


def _dec(v: Number) -> Decimal:
    return v if isinstance(v, Decimal) else Decimal(str(v))

# module backend.quotes.calculator
def round2(amount: Number) -> Decimal:
    """Arrondi monétaire à 2 décimales, demi supérieur (0.005 -> 0.01)."""
    return _dec(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def line_amounts(line: QuoteLine) -> LineAmounts:
    """Montants non arrondis d'une ligne: HT = qté x PU HT, TVA = HT x taux / 100."""
    line_ht = line.quantity * line.unit_price_ht
    line_vat = line_ht * line.vat_rate / HUNDRED
    return LineAmounts(line_ht, line_vat, line_ht + line_vat)


def compute_totals(lines: Iterable[QuoteLine]) -> QuoteTotals:
    """
    Totaux agrégés d'un devis, TVA mixte autorisée.
    - Somme en pleine précision puis arrondi unique de chaque total.
    - TTC = arrondi(HT + TVA) et non somme des arrondis.
    - Résultat indépendant de l'ordre des lignes.
    """
    total_ht = Decimal("0")
    total_vat = Decimal("0")
    for line in lines:
        amounts = line_amounts(line)
        total_ht += amounts.line_ht
        total_vat += amounts.line_vat
    return QuoteTotals(round2(total_ht), round2(total_vat), round2(total_ht + total_vat))


def clamp_percent(percent: Number) -> Decimal:
    p = _dec(percent)
    if p < 0:
        return Decimal("0")
    if p > HUNDRED:
        return HUNDRED
    return p


def compute_deposit_amount(total_ttc: Number, percent: Number) -> Decimal:
    """Montant de l'acompte: arrondi(TTC x pourcentage / 100), pourcentage borné à [0, 100]."""
    return round2(_dec(total_ttc) * clamp_percent(percent) / HUNDRED)


def compute_line_amounts(lines: Iterable[QuoteLine]) -> List[LineAmounts]:
    """
    Montants arrondis ligne par ligne, pour l'affichage uniquement.
    Leur somme peut différer des totaux de compute_totals d'un centime; seuls ces derniers sont persistés.
    """
    result = []
    for line in lines:
        amounts = line_amounts(line)
        ht = round2(amounts.line_ht)
        vat = round2(amounts.line_vat)
        result.append(LineAmounts(ht, vat, ht + vat))
    return result


class QuoteDraft(NamedTuple):
    """Lignes + montants dérivés. Seule source de totaux acceptée par le repository."""
    lines: Tuple[QuoteLine, ...]
    totals: QuoteTotals
    deposit_percent: Decimal
    deposit_amount: Decimal


def price_quote(lines: Iterable[QuoteLine], deposit_percent: Number) -> QuoteDraft:
    """Seule source des montants persistés. ValidationError si un montant sort de la précision décimale."""
    items = tuple(lines)
    try:
        totals = compute_totals(items)
        percent = clamp_percent(deposit_percent)
        deposit = compute_deposit_amount(totals.total_ttc, percent)
    except InvalidOperation as e:
        raise ValidationError("Montants hors limites pour le calcul du devis") from e
    return QuoteDraft(items, totals, percent, deposit)


def to_minor_units(amount: Number) -> int:
    """Convertit un montant en centimes (devises à 2 décimales)."""
    return int(round2(amount) * HUNDRED)
