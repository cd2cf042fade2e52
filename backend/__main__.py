"""
Lance l'API devis/acomptes avec uvicorn.

Usage:
    python -m backend

Variables d'environnement:
- PORT: port d'écoute (8000 par défaut)
- UVICORN_RELOAD: rechargement auto en dev ("1"/"true"/"yes")
- LOG_LEVEL: niveau des logs uvicorn et applicatifs (info, debug, ...)
"""
import logging
import os

import uvicorn


def main() -> None:
    log_level = os.environ.get("LOG_LEVEL", "info").lower()
    # Les loggers backend.* (dont backend.payments.reconciliation) suivent le niveau uvicorn
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        "backend.asgi:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 8000)),
        reload=os.environ.get("UVICORN_RELOAD", "").lower() in ("1", "true", "yes"),
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
