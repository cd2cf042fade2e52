# module backend.auth.repository
from typing import Any, Dict

USER_FIELDS = ("id", "email", "user_metadata")


def get_user_from_access_token(client, access_token: str) -> Dict[str, Any]:
    """
    Interroge supabase.auth.get_user(access_token).
    Retourne un dict {id, email, user_metadata}; vide si Supabase ne renvoie aucun utilisateur.
    Les erreurs du SDK (jeton expiré, signature invalide) sont propagées à l'appelant.
    """
    res = client.auth.get_user(access_token)
    user = getattr(res, "user", None)
    if not user:
        return {}
    if isinstance(user, dict):
        return {k: user.get(k) for k in USER_FIELDS}
    return {k: getattr(user, k, None) for k in USER_FIELDS}
