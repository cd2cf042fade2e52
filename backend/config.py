# backend.config
from dataclasses import dataclass, field
from pathlib import Path
import os
from typing import List
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe), CORS/hosts
- Expose les paramètres métier des devis (acompte par défaut, validité, devise)
- Regroupe le tout dans un objet Settings immuable consommé par la racine de composition
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_flag(name: str, default: str = "false") -> bool:
    return _clean_env(os.getenv(name, default)).lower() in ("1", "true", "yes")

def _env_list(name: str, default: str) -> List[str]:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]

# Supabase: URL et clés (anon pour l'auth, service pour les écritures serveur)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON_KEY = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Environnement d'exécution: development | test | production
APP_ENV = _clean_env(os.getenv("APP_ENV") or "development").lower()

COOKIE_SECURE = _env_flag("COOKIE_SECURE")
CORS_ORIGINS = _env_list("CORS_ORIGINS", "*")
ALLOWED_HOSTS = _env_list("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")

# Stripe: clé secrète, secret webhook, délai max des appels sortants
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_TIMEOUT_SECONDS = float(_clean_env(os.getenv("STRIPE_TIMEOUT_SECONDS") or "10"))

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

# Devis
DEFAULT_CURRENCY = _clean_env(os.getenv("DEFAULT_CURRENCY") or "eur").lower()
DEFAULT_DEPOSIT_PERCENT = float(_clean_env(os.getenv("DEFAULT_DEPOSIT_PERCENT") or "30"))
QUOTE_VALIDITY_DAYS = int(_clean_env(os.getenv("QUOTE_VALIDITY_DAYS") or "30"))
SIGNATURES_BUCKET = _clean_env(os.getenv("SIGNATURES_BUCKET") or "signatures")

# Questions ouvertes: comportement observé par défaut, durcissement activable
MANUAL_DEPOSIT_REQUIRES_SIGNED = _env_flag("MANUAL_DEPOSIT_REQUIRES_SIGNED")
CHECKOUT_REUSE_PENDING = _env_flag("CHECKOUT_REUSE_PENDING")


@dataclass(frozen=True)
class Settings:
    """Instantané de la configuration, passé explicitement à la racine de composition."""
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_service_key: str = ""
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_timeout_seconds: float = 10.0
    app_env: str = "development"
    base_url: str = "http://localhost:8000"
    currency: str = "eur"
    default_deposit_percent: float = 30.0
    quote_validity_days: int = 30
    signatures_bucket: str = "signatures"
    manual_deposit_requires_signed: bool = False
    checkout_reuse_pending: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    allowed_hosts: List[str] = field(default_factory=lambda: ["localhost", "127.0.0.1", "testserver"])

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def webhook_configured(self) -> bool:
        return bool(self.stripe_webhook_secret)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)


def load_settings() -> Settings:
    """Construit Settings à partir des constantes chargées depuis l'environnement."""
    return Settings(
        supabase_url=SUPABASE_URL,
        supabase_anon_key=SUPABASE_ANON_KEY,
        supabase_service_key=SUPABASE_SERVICE_KEY,
        stripe_secret_key=STRIPE_SECRET_KEY,
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
        stripe_timeout_seconds=STRIPE_TIMEOUT_SECONDS,
        app_env=APP_ENV,
        base_url=BASE_URL,
        currency=DEFAULT_CURRENCY,
        default_deposit_percent=DEFAULT_DEPOSIT_PERCENT,
        quote_validity_days=QUOTE_VALIDITY_DAYS,
        signatures_bucket=SIGNATURES_BUCKET,
        manual_deposit_requires_signed=MANUAL_DEPOSIT_REQUIRES_SIGNED,
        checkout_reuse_pending=CHECKOUT_REUSE_PENDING,
        cors_origins=list(CORS_ORIGINS),
        allowed_hosts=list(ALLOWED_HOSTS),
    )
