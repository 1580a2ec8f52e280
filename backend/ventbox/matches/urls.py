# ventbox/matches/urls.py
from django.urls import path

from .views import MatchEndView, SessionDetailView

urlpatterns = [
    path("end", MatchEndView.as_view()),
    path("end/", MatchEndView.as_view()),
    path("sessions/<str:session_id>", SessionDetailView.as_view()),
    path("sessions/<str:session_id>/", SessionDetailView.as_view()),
]
