"""
Caregiver geolocation as reported by the client device.

The device answers a position request either with coordinates or with a
typed failure (the W3C codes: 1 permission denied, 2 position
unavailable, 3 timeout).  Every consumer of a position in the offer flow
is best-effort: a failure means "no coordinates", never a blocked offer.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

PERMISSION_DENIED = 'permission_denied'
POSITION_UNAVAILABLE = 'position_unavailable'
TIMEOUT = 'timeout'

_W3C_CODES = {1: PERMISSION_DENIED, 2: POSITION_UNAVAILABLE, 3: TIMEOUT}


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float
    accuracy: Optional[float] = None

    def as_dict(self) -> dict:
        return {'lat': self.lat, 'lng': self.lng, 'accuracy': self.accuracy}


class GeolocationError(Exception):
    def __init__(self, reason: str, message: str = ''):
        super().__init__(message or reason)
        self.reason = reason


def failure_reason(code: Any) -> str:
    """Map a W3C numeric code or a reason string to one of the known reasons."""
    if isinstance(code, str) and code in (PERMISSION_DENIED, POSITION_UNAVAILABLE, TIMEOUT):
        return code
    try:
        return _W3C_CODES.get(int(code), POSITION_UNAVAILABLE)
    except (TypeError, ValueError):
        return POSITION_UNAVAILABLE


def _coordinate(value: Any, bound: float) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise GeolocationError(POSITION_UNAVAILABLE, 'invalid coordinate')
    if not math.isfinite(f) or abs(f) > bound:
        raise GeolocationError(POSITION_UNAVAILABLE, 'coordinate out of range')
    return f


def parse_position(payload: Optional[Mapping[str, Any]]) -> Position:
    """Parse ``{'lat', 'lng', 'accuracy'?}`` or ``{'error': code}``.

    Raises :class:`GeolocationError` for reported failures and malformed
    coordinates.
    """
    if not payload:
        raise GeolocationError(POSITION_UNAVAILABLE, 'no position')
    if payload.get('error') is not None:
        raise GeolocationError(failure_reason(payload.get('error')), str(payload.get('message') or ''))
    lat = _coordinate(payload.get('lat', payload.get('latitude')), 90)
    lng = _coordinate(payload.get('lng', payload.get('longitude')), 180)
    accuracy = payload.get('accuracy')
    try:
        accuracy = float(accuracy) if accuracy is not None else None
    except (TypeError, ValueError):
        accuracy = None
    return Position(lat=lat, lng=lng, accuracy=accuracy)


def best_effort_position(payload: Optional[Mapping[str, Any]]) -> Optional[Position]:
    """Like :func:`parse_position` but returns None instead of raising."""
    try:
        return parse_position(payload)
    except GeolocationError as e:
        logger.info("caregiver position unavailable (%s), continuing without coordinates", e.reason)
        return None


class ClientGeolocator:
    """Ask a connected client for its position over an open websocket.

    ``send`` pushes a ``locate`` frame carrying the timeout and accuracy
    hint; the consumer feeds the device's ``position`` or
    ``position_error`` reply back through :meth:`resolve`.  ``locate``
    never raises: failures, malformed replies and timeouts give None.
    """

    def __init__(self, send: Callable[[dict], Awaitable[None]], *, timeout_ms: int = 15000,
                 high_accuracy: bool = True):
        self._send = send
        self.timeout_ms = timeout_ms
        self.high_accuracy = high_accuracy
        self._pending: Optional[asyncio.Future] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def locate(self) -> Optional[Position]:
        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        await self._send({
            'type': 'locate',
            'timeout': self.timeout_ms,
            'enableHighAccuracy': self.high_accuracy,
        })
        try:
            payload = await asyncio.wait_for(self._pending, self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.info("caregiver position unavailable (%s), continuing without coordinates", TIMEOUT)
            return None
        finally:
            self._pending = None
        return best_effort_position(payload)

    def resolve(self, payload: Optional[Mapping[str, Any]]) -> bool:
        """Complete the outstanding request.  Returns False when nothing was waiting."""
        if not self.pending:
            return False
        self._pending.set_result(payload)
        return True
