import logging
from typing import Any, Dict

from fastapi import APIRouter, Request, Depends
from starlette.concurrency import run_in_threadpool

from backend.app_setup.container import Services, get_services
from backend.payments.models import CheckoutRequest
from backend.payments.service import request_checkout
from backend.payments.webhook import handle_webhook
from backend.utils.rate_limit import optional_rate_limit
from backend.utils.security import require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module backend.payments.views
@router.post("/checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_checkout(
    payload: CheckoutRequest,
    user: Dict[str, Any] = Depends(require_user),
    services: Services = Depends(get_services),
):
    """
    Crée une session Checkout Stripe pour l'acompte d'un devis signé.
    - Entrée JSON: { "quote_id": "<uuid>" }
    - Sécurité: require_user + rate limit (10 req / 60s)
    - Réponse: { "paymentUrl", "sessionId", "placeholder" }
    - Erreurs: 400 si le devis n'est pas signé ou déjà réglé, 502/504 si Stripe échoue
    """
    settings = services.settings
    session, payment = request_checkout(
        services.quotes,
        services.payments,
        services.gateway,
        owner_id=user["id"],
        quote_id=payload.quote_id,
        currency=settings.currency,
        reuse_pending=settings.checkout_reuse_pending,
    )
    return {
        "paymentUrl": session.url,
        "sessionId": session.session_id,
        "paymentId": payment.id,
        "placeholder": session.placeholder,
    }


@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, services: Services = Depends(get_services)):
    """
    Webhook Stripe: réconcilie paiements et devis.
    - Signature: vérifiée sur le corps brut (header Stripe-Signature + STRIPE_WEBHOOK_SECRET); 400 sinon
    - Réponse: {"received": true, "action": ...}; toujours 200 une fois la signature validée
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    result = await run_in_threadpool(
        handle_webhook, services.gateway, services.quotes, services.payments, payload, sig_header
    )
    return {"received": True, "type": result.event_type, "action": result.action}
