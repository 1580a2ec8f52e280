from django.urls import path

from .views import QueueStatsView

urlpatterns = [
    path("stats", QueueStatsView.as_view()),
    path("stats/", QueueStatsView.as_view()),
]
