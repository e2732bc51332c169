# billing.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du service de facturation.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, PayPal), CORS/hosts
- Fournit la résolution explicite de la clé Stripe à utiliser pour une requête
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _flag(name: str, default: str = "false") -> bool:
    return _clean_env(os.getenv(name, default)).lower() in ("1", "true", "yes")

# Supabase: URL et clés (anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clé plateforme, clé live optionnelle, secret webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_LIVE_SECRET_KEY = _clean_env(os.getenv("STRIPE_LIVE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

# PayPal: identifiants REST, mode sandbox, webhook id pour la vérification de signature
PAYPAL_CLIENT_ID = _clean_env(os.getenv("PAYPAL_CLIENT_ID") or "")
PAYPAL_SECRET = _clean_env(os.getenv("PAYPAL_SECRET") or "")
PAYPAL_SANDBOX = _flag("PAYPAL_SANDBOX")
PAYPAL_WEBHOOK_ID = _clean_env(os.getenv("PAYPAL_WEBHOOK_ID") or "")
PAYPAL_LIVE_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_URL = "https://api-m.sandbox.paypal.com"

# CORS / hosts
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
COOKIE_SECURE = _flag("COOKIE_SECURE")

# Front: URLs de retour (portail client, approbation PayPal) et marque affichée chez PayPal
FRONTEND_URL = _clean_env(os.getenv("FRONTEND_URL") or "http://localhost:5173").rstrip("/")
BRAND_NAME = _clean_env(os.getenv("BRAND_NAME") or "World Music Method")


def resolve_stripe_secret_key() -> str:
    """
    Résout la clé Stripe à utiliser pour la requête courante.
    - Priorité à STRIPE_LIVE_SECRET_KEY si c'est bien une clé live (sk_live_/rk_live_)
    - Sinon STRIPE_SECRET_KEY (clé gérée par la plateforme)
    Relit l'environnement à chaque appel: une rotation de clé est prise en compte sans redémarrage.
    """
    live = _clean_env(os.getenv("STRIPE_LIVE_SECRET_KEY") or STRIPE_LIVE_SECRET_KEY)
    if live.startswith(("sk_live_", "rk_live_")):
        return live
    return _clean_env(os.getenv("STRIPE_SECRET_KEY") or STRIPE_SECRET_KEY)


def paypal_base_url(stripe_key: str | None = None) -> str:
    """
    URL de base de l'API PayPal.
    - Sandbox si PAYPAL_SANDBOX=true ou si la clé Stripe résolue est une clé de test
    """
    if _flag("PAYPAL_SANDBOX") or PAYPAL_SANDBOX:
        return PAYPAL_SANDBOX_URL
    if (stripe_key or "").startswith("sk_test_"):
        return PAYPAL_SANDBOX_URL
    return PAYPAL_LIVE_URL
