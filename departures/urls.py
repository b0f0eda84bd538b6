from django.urls import path
from . import views

app_name = 'departures'

urlpatterns = [
    path('health/', views.health, name='health'),
    path('next/', views.next_text, name='next'),
    path('panel/', views.panel, name='panel'),
    path('api/next/', views.api_next, name='api_next'),
]
