"""
ASGI config for the BloodBridge project.

Only HTTP is served; there are no WebSocket routes.
"""
import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "bloodbridge.settings")

from django.core.asgi import get_asgi_application  # noqa: E402

application = get_asgi_application()
