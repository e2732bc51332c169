"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

Un serveur ASGI (uvicorn, gunicorn + UvicornWorker) importe `billing.asgi:app`.
Toute la configuration est centralisée dans billing.app_setup.factory.
"""
import logging
import os

from billing.app_setup.factory import create_app

logging.basicConfig(level=os.getenv("LOG_LEVEL", "info").upper())

app = create_app()
