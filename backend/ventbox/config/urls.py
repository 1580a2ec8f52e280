# ventbox/config/urls.py
from django.contrib import admin
from django.urls import path, include


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/auth/", include("ventbox.authentication.urls")),
    path("api/users/", include("ventbox.users.urls")),
    path("api/queue/", include("ventbox.queues.urls")),
    path("api/match/", include("ventbox.matches.urls")),
]
