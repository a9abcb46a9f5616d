# storefront.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Whop, PayPal)
- Expose les réglages du rapprochement des paiements (timeouts, TTL, fenêtre anti-doublon)
- Sécurité: CORS/hosts, jeton d'administration
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")


def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _float_env(name: str, default: float) -> float:
    raw = _clean_env(os.getenv(name) or "")
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


# Supabase: URL et clés (anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Whop: clé API, société, secret webhook
# Les valeurs vides sont complétées par la ligne 'whop' de la table settings
WHOP_API_BASE = _clean_env(os.getenv("WHOP_API_BASE") or "https://api.whop.com/api/v2").rstrip("/")
WHOP_API_KEY = _clean_env(os.getenv("WHOP_API_KEY") or "")
WHOP_COMPANY_ID = _clean_env(os.getenv("WHOP_COMPANY_ID") or "")
WHOP_WEBHOOK_SECRET = _clean_env(os.getenv("WHOP_WEBHOOK_SECRET") or "")
WHOP_DEFAULT_PRODUCT_ID = _clean_env(os.getenv("WHOP_DEFAULT_PRODUCT_ID") or "")
WHOP_CURRENCY = _clean_env(os.getenv("WHOP_CURRENCY") or "usd").lower()

# PayPal: identifiants OAuth2, mode sandbox/live, secret webhook
PAYPAL_CLIENT_ID = _clean_env(os.getenv("PAYPAL_CLIENT_ID") or "")
PAYPAL_SECRET = _clean_env(os.getenv("PAYPAL_SECRET") or "")
PAYPAL_MODE = _clean_env(os.getenv("PAYPAL_MODE") or "sandbox").lower()
PAYPAL_WEBHOOK_SECRET = _clean_env(os.getenv("PAYPAL_WEBHOOK_SECRET") or "")
PAYPAL_BRAND_NAME = _clean_env(os.getenv("PAYPAL_BRAND_NAME") or "Storefront")

# Rapprochement des paiements
PROVIDER_TIMEOUT_SECONDS = _float_env("PROVIDER_TIMEOUT_SECONDS", 10.0)
DUPLICATE_WINDOW_MINUTES = _int_env("DUPLICATE_WINDOW_MINUTES", 5)
WHOP_CHECKOUT_TTL_SECONDS = _int_env("WHOP_CHECKOUT_TTL_SECONDS", 15 * 60)
PAYPAL_CHECKOUT_TTL_SECONDS = _int_env("PAYPAL_CHECKOUT_TTL_SECONDS", 30 * 60)
CLEANUP_BATCH_LIMIT = _int_env("CLEANUP_BATCH_LIMIT", 50)
DEFAULT_DELIVERY_MINUTES = _int_env("DEFAULT_DELIVERY_MINUTES", 60)

# Cache catalogue (quelques secondes, jamais utilisé pour la correction)
PRODUCT_CACHE_TTL_SECONDS = _float_env("PRODUCT_CACHE_TTL_SECONDS", 5.0)
SETTINGS_CACHE_TTL_SECONDS = _float_env("SETTINGS_CACHE_TTL_SECONDS", 30.0)

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Jeton Bearer des routes d'administration (vide = routes admin fermées)
ADMIN_API_TOKEN = _clean_env(os.getenv("ADMIN_API_TOKEN") or "")

# URL publique (redirections fournisseur); vide = URL de la requête entrante
BASE_URL = _clean_env(os.getenv("BASE_URL") or "").rstrip("/")
