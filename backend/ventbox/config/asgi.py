import os
from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ventbox.config.settings")

django_asgi_app = get_asgi_application()

from channels.routing import ProtocolTypeRouter, URLRouter
from ventbox.config.jwt_auth_middleware import JwtAuthMiddlewareStack
import ventbox.matches.routing

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": JwtAuthMiddlewareStack(
            URLRouter(ventbox.matches.routing.websocket_urlpatterns)
        ),
    }
)
