"""
WSGI config for the carehub project.

Serves the REST API only; websocket consumers need the ASGI entrypoint
in ``carehub.asgi``.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'carehub.settings')

application = get_wsgi_application()
