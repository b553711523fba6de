"""
URL mappings for the emergency nursing API.

Trailing slashes are omitted to match the paths the mobile client
already calls.
"""
from django.urls import include, path

from .auth_views import login_view
from .views import emergency, health

urlpatterns = [
    path('api/auth/login', login_view),
    path('api/emergency/feed', emergency.emergency_feed),
    path('api/emergency/offers', emergency.offer_submit),
    path('api/emergency/offers/mine', emergency.my_offers),
    path('api/emergency/offers/<uuid:offer_id>/accept', emergency.offer_accept),
    path('api/emergency/requests', emergency.request_create),
    path('api/emergency/requests/<uuid:request_id>/cancel', emergency.request_cancel),
    path('api/emergency/requests/<uuid:request_id>/offers', emergency.request_offers),
    path('healthz', health.healthz),
    path('', include('django_prometheus.urls')),
]
