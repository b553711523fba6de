import asyncio
import json
import logging
from urllib.parse import parse_qs

from asgiref.sync import sync_to_async
from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from django.core.exceptions import ObjectDoesNotExist

from nursing.errors import NotAllowed
from nursing.models import EmergencyRequest
from nursing.permissions import approved_nurse_for
from nursing.realtime.alerts import sound_cue
from nursing.realtime.card import FlashCard
from nursing.realtime.feed import LiveFeed
from nursing.realtime.session import FlashCardSession
from nursing.realtime.subscriptions import DELETE, Subscription, subscribe, unsubscribe
from nursing.services.emergencies import COLLECTION, list_live_requests, serialize_request
from nursing.services.geo import haversine_km
from nursing.services.geolocation import ClientGeolocator, best_effort_position
from nursing.services import offers
from nursing.services.offers import list_offers_for_request, offered_request_ids, serialize_offer, submit_offer

logger = logging.getLogger(__name__)


async def _ws_error(ws, code: int, message: str, *, close: bool = False):
    """
    Uniform error frame.
    Codes: 4xxx client errors, 5xxx server errors.
    """
    payload = {"type": "error", "code": code, "message": message}
    try:
        await ws.send(json.dumps(payload))
    finally:
        if close:
            await ws.close(code=code)


def _snapshot(nurse):
    return list_live_requests(), offered_request_ids(nurse)


def _query_position(scope):
    query = parse_qs((scope.get("query_string") or b"").decode("latin-1"))
    if "lat" not in query or "lng" not in query:
        return None
    return best_effort_position({"lat": query["lat"][0], "lng": query["lng"][0]})


class JsonFrameMixin:
    async def send_frame(self, frame: dict):
        await self.send(json.dumps(frame))

    async def read_frame(self, text_data):
        if not text_data:
            return None
        try:
            data = json.loads(text_data)
        except ValueError:
            await _ws_error(self, 4000, "invalid_json")
            return None
        if not isinstance(data, dict):
            await _ws_error(self, 4001, "invalid_payload")
            return None
        return data


class EmergencyFeedConsumer(JsonFrameMixin, AsyncWebsocketConsumer):
    """Live list of open emergency requests for one approved nurse.

    Frames sent: ``snapshot`` and ``feed`` (``data`` + ``offeredRequestIds``),
    ``cue`` when the list changes, ``error``.
    Frames received: ``location`` {lat, lng}, ``refresh``, ``offered`` {requestId}.
    """

    async def connect(self):
        user = self.scope.get("user") or AnonymousUser()
        self.nurse = await sync_to_async(approved_nurse_for)(user)
        if self.nurse is None:
            await self.close(code=4003)
            return

        self.feed = LiveFeed(radius_km=self.nurse.home_visit_radius, origin=_query_position(self.scope))
        self._reload_seq = 0
        self._buffered = None
        self._reloads = set()
        self.subscription = Subscription.parse(COLLECTION, "status=eq.live")
        await subscribe(self.channel_layer, self.channel_name, self.subscription)
        await self.accept()

        rows, offered = await self._load_snapshot()
        self.feed.load(rows, offered)
        await self._push("snapshot")

    async def disconnect(self, close_code):
        if hasattr(self, "subscription"):
            await unsubscribe(self.channel_layer, self.channel_name, self.subscription)
        for task in list(getattr(self, "_reloads", ())):
            task.cancel()

    async def receive(self, text_data=None, bytes_data=None):
        data = await self.read_frame(text_data)
        if data is None:
            return

        kind = data.get("type")
        if kind == "location":
            position = best_effort_position(data)
            if position is None:
                await _ws_error(self, 4004, "invalid_location")
                return
            self.feed.set_origin(position)
            await self._push("feed")
        elif kind == "refresh":
            task = asyncio.create_task(self._reload())
            self._reloads.add(task)
            task.add_done_callback(self._reloads.discard)
        elif kind == "offered":
            if not data.get("requestId"):
                await _ws_error(self, 4005, "missing_request_id")
                return
            self.feed.mark_offered(data["requestId"])
            await self._push("feed")
        else:
            await _ws_error(self, 4002, "unsupported_type")

    async def _reload(self):
        """Full re-read; when reloads overlap only the last one started is applied."""
        self._reload_seq += 1
        seq = self._reload_seq
        if self._buffered is None:
            self._buffered = []
        try:
            rows, offered = await self._load_snapshot()
        except Exception:
            logger.exception("feed reload failed for nurse %s", self.nurse.id)
            if seq == self._reload_seq:
                # keep the current list but still apply what arrived meanwhile
                self._replay_buffered()
                await self._push("feed")
                await _ws_error(self, 5000, "server_error")
            return
        if seq != self._reload_seq:
            logger.debug("discarding stale feed reload %d", seq)
            return
        self.feed.load(rows, offered)
        self._replay_buffered()
        await self._push("feed")

    async def _load_snapshot(self):
        return await sync_to_async(_snapshot)(self.nurse)

    def _replay_buffered(self):
        buffered, self._buffered = self._buffered or [], None
        for event in buffered:
            self.feed.apply(event)

    async def _push(self, frame_type: str):
        await self.send_frame({
            "type": frame_type,
            "data": self.feed.visible(),
            "offeredRequestIds": sorted(self.feed.offered_ids),
        })

    async def row_change(self, event):
        # events arriving while a reload is in flight are replayed on top of it
        if self._buffered is not None:
            self._buffered.append(event)
            return
        before = self.feed.visible()
        self.feed.apply(event)
        if self.feed.visible() != before:
            await self._push("feed")
            await sound_cue(self.send_frame)


def _load_request(request_id):
    try:
        return serialize_request(EmergencyRequest.objects.get(id=request_id))
    except EmergencyRequest.DoesNotExist:
        return None


class FlashCardConsumer(JsonFrameMixin, AsyncWebsocketConsumer):
    """Transient card for one request, driven by :class:`FlashCardSession`.

    Frames sent: ``card``, ``locate``, ``accepted``, ``dismissed``, ``error``.
    Frames received: ``accept``, ``cancel``, ``offer`` {price, etaMinutes,
    message}, ``dismiss``, ``position`` {lat, lng, accuracy},
    ``position_error`` {error}.
    """

    async def connect(self):
        self.request_id = str(self.scope["url_route"]["kwargs"]["request_id"])

        user = self.scope.get("user") or AnonymousUser()
        self.nurse = await sync_to_async(approved_nurse_for)(user)
        if self.nurse is None:
            await self.close(code=4003)
            return

        # join the group before reading so no status change falls in between
        self.subscription = Subscription.parse(COLLECTION, f"id=eq.{self.request_id}")
        await subscribe(self.channel_layer, self.channel_name, self.subscription)
        row = await sync_to_async(_load_request)(self.request_id)
        if row is None or row["status"] != EmergencyRequest.STATUS_LIVE:
            await unsubscribe(self.channel_layer, self.channel_name, self.subscription)
            await self.close(code=4004 if row is None else 4009)
            return

        origin = _query_position(self.scope)
        distance = None
        if origin is not None:
            distance = haversine_km(origin.lat, origin.lng, row["locationLat"], row["locationLng"])

        await self.accept()

        self.geolocator = ClientGeolocator(
            self.send_frame,
            timeout_ms=settings.GEOLOCATION_TIMEOUT_MS,
            high_accuracy=settings.GEOLOCATION_HIGH_ACCURACY,
        )
        card = FlashCard(
            row,
            distance_km=distance,
            nurse_fee=self.nurse.per_visit_fee,
            auto_hide_seconds=settings.EMERGENCY_CARD_AUTO_HIDE_SECONDS,
        )
        self.session = FlashCardSession(
            card,
            send=self.send_frame,
            submit=self._submit,
            locate=self.geolocator.locate,
            on_accepted=self._accepted,
            on_close=self._closed,
            tick_seconds=settings.EMERGENCY_CARD_TICK_SECONDS,
            enter_seconds=settings.EMERGENCY_CARD_ENTER_SECONDS,
            exit_seconds=settings.EMERGENCY_CARD_EXIT_SECONDS,
            accepted_hold_seconds=settings.EMERGENCY_CARD_ACCEPTED_HOLD_SECONDS,
        )
        await self.session.start()

    async def disconnect(self, close_code):
        if hasattr(self, "subscription"):
            await unsubscribe(self.channel_layer, self.channel_name, self.subscription)
        if hasattr(self, "session"):
            await self.session.stop()

    async def receive(self, text_data=None, bytes_data=None):
        data = await self.read_frame(text_data)
        if data is None:
            return

        kind = data.get("type")
        if kind == "accept":
            await self.session.accept()
        elif kind == "cancel":
            await self.session.cancel()
        elif kind == "offer":
            await self.session.offer(data.get("price"), data.get("etaMinutes"), data.get("message"))
        elif kind == "dismiss":
            await self.session.dismiss()
        elif kind in ("position", "position_error"):
            if kind == "position_error":
                data = {"error": data.get("error") or data.get("code"), "message": data.get("message")}
            if not self.geolocator.resolve(data):
                logger.debug("unsolicited %s frame on card %s", kind, self.request_id)
        else:
            await _ws_error(self, 4002, "unsupported_type")

    async def row_change(self, event):
        if not hasattr(self, "session"):
            return
        row = None if event.get("event") == DELETE else event.get("new")
        await self.session.request_changed(row)

    async def _submit(self, price, eta_minutes, message, position):
        offer = await sync_to_async(submit_offer)(
            self.nurse, self.request_id,
            price=price, eta_minutes=eta_minutes, message=message, position=position,
        )
        return serialize_offer(offer)

    async def _accepted(self, offer):
        await self.send_frame({"type": "accepted", "offer": offer})

    async def _closed(self, reason):
        await self.send_frame({"type": "dismissed", "reason": reason})
        await self.close()


def _status_snapshot(user, request_id):
    req = EmergencyRequest.objects.get(id=request_id)
    if req.patient_id != user.pk:
        raise NotAllowed()
    return serialize_request(req), list_offers_for_request(user, request_id)


def _current_offers(user, request_id):
    try:
        return list_offers_for_request(user, request_id)
    except ObjectDoesNotExist:
        return []


class RequestStatusConsumer(JsonFrameMixin, AsyncWebsocketConsumer):
    """The requesting patient's live view of one request and its offers.

    Frames sent: ``snapshot`` {request, offers}, ``request`` {data} on
    request changes, ``offers`` {data} when an offer is added or changes
    status.  No client frames are accepted.
    """

    async def connect(self):
        self.request_id = str(self.scope["url_route"]["kwargs"]["request_id"])
        self.user = self.scope.get("user") or AnonymousUser()
        if not self.user.is_authenticated:
            await self.close(code=4003)
            return

        self.subscriptions = [
            Subscription.parse(COLLECTION, f"id=eq.{self.request_id}"),
            Subscription.parse(offers.COLLECTION, f"requestId=eq.{self.request_id}"),
        ]
        for sub in self.subscriptions:
            await subscribe(self.channel_layer, self.channel_name, sub)
        try:
            row, offer_rows = await sync_to_async(_status_snapshot)(self.user, self.request_id)
        except EmergencyRequest.DoesNotExist:
            await self._leave()
            await self.close(code=4004)
            return
        except NotAllowed:
            await self._leave()
            await self.close(code=4003)
            return

        self.ready = True
        await self.accept()
        await self.send_frame({"type": "snapshot", "request": row, "offers": offer_rows})

    async def disconnect(self, close_code):
        await self._leave()

    async def _leave(self):
        for sub in getattr(self, "subscriptions", ()):
            await unsubscribe(self.channel_layer, self.channel_name, sub)
        self.subscriptions = []

    async def receive(self, text_data=None, bytes_data=None):
        data = await self.read_frame(text_data)
        if data is not None:
            await _ws_error(self, 4002, "unsupported_type")

    async def row_change(self, event):
        if not getattr(self, "ready", False):
            return
        if event.get("collection") == offers.COLLECTION:
            # same shape as the REST offers list
            offer_rows = await sync_to_async(_current_offers)(self.user, self.request_id)
            await self.send_frame({"type": "offers", "data": offer_rows})
            return
        row = None if event.get("event") == DELETE else event.get("new")
        await self.send_frame({"type": "request", "data": row})
