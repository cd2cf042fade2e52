# module backend.app
"""
Instance globale de l'application, construite par backend.app_setup.factory.create_app().
Les services (Supabase, Stripe) sont créés au démarrage par le lifespan, pas à l'import.
"""
from backend.app_setup.factory import create_app

app = create_app()
