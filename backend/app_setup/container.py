"""
Racine de composition: construit une seule fois les dépendances partagées
(clients Supabase, repositories, stockage des signatures, passerelle Stripe)
et les expose aux vues via la dépendance get_services.
"""
from dataclasses import dataclass
import logging

from fastapi import Request

from backend.config import Settings
from backend.infra.supabase_client import create_anon_client, create_service_client
from backend.payments.repository import PaymentRepository
from backend.payments.stripe_client import StripeGateway
from backend.quotes.repository import QuoteRepository
from backend.quotes.signature import SignatureStorage

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    quotes: QuoteRepository
    payments: PaymentRepository
    signatures: SignatureStorage
    gateway: StripeGateway
    supabase: object = None
    # Client utilisé pour résoudre les jetons d'accès (anon si configuré, sinon service)
    auth_client: object = None


def build_gateway(settings: Settings) -> StripeGateway:
    """Mode dégradé autorisé uniquement hors production."""
    return StripeGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        base_url=settings.base_url,
        timeout_seconds=settings.stripe_timeout_seconds,
        allow_placeholder=not settings.is_production,
    )


def build_services(settings: Settings, supabase_client=None, auth_client=None) -> Services:
    """
    Assemble les services de l'application.
    - supabase_client / auth_client: injectés par les tests; sinon créés à partir de Settings.
    """
    client = supabase_client if supabase_client is not None else create_service_client(
        settings.supabase_url, settings.supabase_service_key
    )
    if auth_client is None:
        auth_client = (
            create_anon_client(settings.supabase_url, settings.supabase_anon_key)
            if settings.supabase_anon_key
            else client
        )
    gateway = build_gateway(settings)
    logger.info(
        "services: stripe_configured=%s webhook_configured=%s env=%s",
        gateway.configured, gateway.webhook_configured, settings.app_env,
    )
    return Services(
        settings=settings,
        quotes=QuoteRepository(client),
        payments=PaymentRepository(client),
        signatures=SignatureStorage(client, settings.signatures_bucket),
        gateway=gateway,
        supabase=client,
        auth_client=auth_client,
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services non initialisés (lifespan non exécuté)")
    return services
