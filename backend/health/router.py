from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from urllib.parse import urlparse

from backend.app_setup.container import Services, get_services
from backend.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

PROBED_TABLES = ("quotes", "quote_items", "payments", "clients")


@router.get("")
def health_root():
    return {"ok": True}


def _check_table(client, name: str):
    try:
        res = client.table(name).select("id").limit(1).execute()
        return {"ok": True, "rows": len(res.data or [])}
    except Exception as e:
        return {"ok": False, "error": str(e)}


@router.get("/supabase")
def health_supabase(services: Services = Depends(get_services)):
    """Sonde Supabase: accès en lecture aux tables utilisées par le service."""
    url = services.settings.supabase_url
    info = {
        "supabase_url": url,
        "hostname": urlparse(url).hostname if url else None,
        "configured": services.settings.supabase_configured,
        "tables": {t: _check_table(services.supabase, t) for t in PROBED_TABLES},
    }
    info["connect_ok"] = all(t["ok"] for t in info["tables"].values())
    return JSONResponse(info, status_code=200 if info["connect_ok"] else 503)


@router.get("/stripe")
def health_stripe(request: Request, services: Services = Depends(get_services)):
    """Capacités Stripe: aucun appel réseau, seulement l'état de configuration."""
    gateway = services.gateway
    return {
        "configured": gateway.configured,
        "webhook_configured": gateway.webhook_configured,
        "placeholder_mode": not gateway.configured and gateway.allow_placeholder,
        "env": services.settings.app_env,
        "rate_limit": rate_limit_health_info(request),
    }
