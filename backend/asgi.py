"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `backend.asgi:app`.
- Toute la configuration FastAPI est centralisée dans backend.app_setup, ce fichier
  ne fait qu'exposer l'instance `app`.
"""

from backend.app import app

if __name__ == "__main__":
    # Exécution directe utile en développement local
    import os
    import uvicorn
    uvicorn.run(
        "backend.asgi:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
