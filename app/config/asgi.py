"""
ASGI config for the marketplace backend.

Exposes the ASGI callable as a module-level variable named `application`.
HTTP is served by Django; payment notifications are pushed to clients
through the Channels layer (see notifications.tasks), whose websocket
consumers are deployed with the client-facing realtime service.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/asgi/
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

# Initialize Django ASGI application early to ensure settings are loaded
# before importing any models or other Django components
django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter  # noqa: E402

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
    }
)
