from django.urls import path

from nursing.realtime.consumers import EmergencyFeedConsumer, FlashCardConsumer, RequestStatusConsumer

# WS routes
websocket_urlpatterns = [
    path("ws/emergency/feed/", EmergencyFeedConsumer.as_asgi()),
    path("ws/emergency/requests/<uuid:request_id>/card/", FlashCardConsumer.as_asgi()),
    path("ws/emergency/requests/<uuid:request_id>/status/", RequestStatusConsumer.as_asgi()),
]
