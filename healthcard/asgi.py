"""
ASGI config for the healthcard project.

HTTP only; the API has no websocket surface.
"""
import os

from django.core.asgi import get_asgi_application  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "healthcard.settings")

application = get_asgi_application()
