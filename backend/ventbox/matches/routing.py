# ventbox/matches/routing.py
from django.urls import re_path

from .consumers import MatchingConsumer

websocket_urlpatterns = [
    re_path(r"^ws/matching/?$", MatchingConsumer.as_asgi()),
]
