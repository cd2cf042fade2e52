import logging
from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any

from backend.app_setup.container import Services, get_services
from backend.auth.repository import get_user_from_access_token

COOKIE_NAME = "sb_access"

logger = logging.getLogger(__name__)


def extract_token(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    token = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    if not token:
        token = request.cookies.get(COOKIE_NAME)
    return token or None


def get_current_user(request: Request, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """
    Résout l'utilisateur Supabase à partir du jeton d'accès.
    - 401 si aucun jeton, ou jeton refusé/expiré.
    - Retourne {id, email, token}; l'id sert de propriétaire des devis.
    """
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")

    try:
        user = get_user_from_access_token(services.auth_client, token)
    except Exception as e:
        logger.info("auth.get_user refused: %s", e)
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return {"id": str(user["id"]), "email": user.get("email"), "token": token}


def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user
