"""
Construction des clients Supabase et conversion des valeurs vers PostgREST.
Les clients sont créés une seule fois par la racine de composition (app_setup.container)
puis injectés dans les repositories; aucun client global n'est conservé ici.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from supabase import create_client, Client


def create_service_client(url: str, service_key: str) -> Client:
    """Client 'service-role' (bypass RLS), utilisé pour les écritures serveur et les webhooks."""
    if not url or not service_key:
        raise RuntimeError("SUPABASE_URL / SUPABASE_SERVICE_KEY manquants pour le client service")
    return create_client(url, service_key)


def create_anon_client(url: str, anon_key: str) -> Client:
    """Client 'anon', utilisé pour résoudre les jetons utilisateurs (auth.get_user)."""
    if not url or not anon_key:
        raise RuntimeError("SUPABASE_URL / SUPABASE_ANON_KEY manquants pour le client anon")
    return create_client(url, anon_key)


def to_db_value(value: Any) -> Any:
    """Decimal -> '12.50', datetime -> ISO 8601, Enum -> valeur."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_db_row(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: to_db_value(v) for k, v in data.items()}
