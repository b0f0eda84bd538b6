"""
URL configuration for the nextmetro project.

The departures app owns every route: /health/, /next/, /panel/ and /api/next/.
"""

from django.urls import path, include

urlpatterns = [
    path("", include("departures.urls")),
]
