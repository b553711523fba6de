"""
Flash card for a single incoming emergency request.

:class:`FlashCard` is the synchronous state machine; timing (entering
delay, ticks, accepted hold, exit transition) is driven from outside by
:class:`nursing.realtime.session.FlashCardSession`.  States::

    ENTERING -> COUNTING -> OFFER_INPUT -> SUBMITTING -> ACCEPTED

and DISMISSED, reachable from all of them.  The countdown only runs in ENTERING and COUNTING.  A request leaving
``live`` dismisses the card at once, except while this caregiver's own
submission is in flight: the change is remembered and applied when the
submission resolves (success still reaches ACCEPTED).
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from nursing.errors import OfferValidationError, RequestNotLive
from nursing.models import SERVICE_LABELS
from nursing.services.geo import estimate_eta_minutes
from nursing.services.offers import validate_offer_input

logger = logging.getLogger(__name__)

ENTERING = 'entering'
COUNTING = 'counting'
OFFER_INPUT = 'offer_input'
SUBMITTING = 'submitting'
ACCEPTED = 'accepted'
DISMISSED = 'dismissed'

DEFAULT_AUTO_HIDE_SECONDS = 45

URGENCY_LABELS = {
    'critical': '🚨 CRITICAL',
    'within_1_hour': '⏰ URGENT',
    'scheduled': '📅 SCHEDULED',
}

# dismiss reasons
MANUAL = 'manual'
TIMEOUT = 'timeout'
UNAVAILABLE = 'unavailable'
COMPLETED = 'accepted'
CRASHED = 'error'

UNAVAILABLE_NOTICE = RequestNotLive.default_message


class FlashCard:
    def __init__(self, request: Mapping[str, Any], *, distance_km: Optional[float] = None,
                 nurse_fee: Optional[int] = None, auto_hide_seconds: int = DEFAULT_AUTO_HIDE_SECONDS):
        self.request = dict(request)
        self.distance_km = distance_km
        self.nurse_fee = nurse_fee
        self.state = ENTERING
        self.remaining = auto_hide_seconds
        self.price = ''
        self.eta = ''
        self.message = ''
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.dismiss_reason: Optional[str] = None
        self._went_stale = False

    @property
    def request_id(self) -> str:
        return str(self.request.get('id'))

    @property
    def closed(self) -> bool:
        return self.state == DISMISSED

    @property
    def counting(self) -> bool:
        return self.state in (ENTERING, COUNTING)

    def entered(self) -> None:
        if self.state == ENTERING:
            self.state = COUNTING

    def tick(self) -> bool:
        """One second elapsed.  Returns True if the card auto-dismissed."""
        if not self.counting:
            return False
        self.remaining = max(0, self.remaining - 1)
        if self.remaining == 0:
            return self.dismiss(TIMEOUT)
        return False

    def accept(self) -> None:
        """Open the offer form with prefilled price and ETA."""
        if not self.counting:
            return
        self.state = OFFER_INPUT
        price = self.request.get('patientOfferPrice') or self.nurse_fee
        self.price = str(price) if price else ''
        self.eta = str(estimate_eta_minutes(self.distance_km))
        self.error = None

    def cancel_offer(self) -> None:
        if self.state == OFFER_INPUT:
            self.state = COUNTING
            self.error = None

    def confirm(self, price: Any = None, eta_minutes: Any = None, message: Optional[str] = None):
        """Validate the form and move to SUBMITTING.

        Returns ``(price, eta_minutes, message)`` for the submitter, or
        None when the card is not in OFFER_INPUT or the input is invalid.
        """
        if self.state != OFFER_INPUT:
            return None
        if price is not None:
            self.price = str(price)
        if eta_minutes is not None:
            self.eta = str(eta_minutes)
        if message is not None:
            self.message = message
        try:
            p, e = validate_offer_input(self.price.strip(), self.eta.strip())
        except OfferValidationError as exc:
            self.error = exc.message
            return None
        self.error = None
        self.state = SUBMITTING
        return p, e, self.message or None

    def submission_succeeded(self) -> None:
        if self.state == SUBMITTING:
            self.state = ACCEPTED
            self.notice = 'Offer sent'

    def submission_failed(self, message: str, request_gone: bool = False) -> None:
        """Back to the form with ``message``, or dismiss if the request left ``live``."""
        if self.state != SUBMITTING:
            return
        if self._went_stale or request_gone:
            self.dismiss(UNAVAILABLE, notice=UNAVAILABLE_NOTICE)
            return
        self.state = OFFER_INPUT
        self.error = message

    def request_changed(self, row: Optional[Mapping[str, Any]]) -> bool:
        """Apply an update to the watched request.  Returns True if it force-dismissed the card."""
        if row and row.get('status') == 'live':
            self.request.update(row)
            return False
        if self.state in (ACCEPTED, DISMISSED):
            return False
        if self.state == SUBMITTING:
            self._went_stale = True
            return False
        return self.dismiss(UNAVAILABLE, notice=UNAVAILABLE_NOTICE)

    def dismiss(self, reason: str = MANUAL, *, notice: Optional[str] = None) -> bool:
        if self.state == DISMISSED:
            return False
        # input is locked while an offer is being sent or confirmed
        if reason == MANUAL and self.state in (SUBMITTING, ACCEPTED):
            return False
        self.state = DISMISSED
        self.dismiss_reason = reason
        if notice:
            self.notice = notice
        return True

    def render(self) -> dict:
        services = list(self.request.get('servicesNeeded') or [])
        services_text = ', '.join(SERVICE_LABELS.get(s, s) for s in services[:2])
        if len(services) > 2:
            services_text += f' +{len(services) - 2}'
        urgency = self.request.get('urgency')
        price = self.request.get('patientOfferPrice')
        data = {
            'requestId': self.request_id,
            'state': self.state,
            'patientName': self.request.get('patientName'),
            'urgency': urgency,
            'urgencyLabel': URGENCY_LABELS[urgency],
            'servicesText': services_text,
            'priceText': f'PKR {price:,}' if price else 'Open Price',
            'distanceText': f'{self.distance_km:.1f} km' if self.distance_km is not None else None,
            'address': self.request.get('locationAddress'),
            'remainingSeconds': self.remaining,
            'notice': self.notice,
            'error': self.error,
        }
        if self.state in (OFFER_INPUT, SUBMITTING):
            data['offer'] = {'price': self.price, 'etaMinutes': self.eta, 'message': self.message}
        return data


class CardBoundary:
    """Keep a failing card from taking its host down.

    Every card call goes through :meth:`run`.  The first exception is
    logged, the card is treated as dismissed and ``on_dismiss`` fires
    once; from then on the card renders nothing.
    """

    def __init__(self, card: FlashCard, on_dismiss: Callable[[], None]):
        self.card = card
        self.on_dismiss = on_dismiss
        self.crashed = False

    def run(self, fn: Callable, *args, **kwargs):
        if self.crashed:
            return None
        try:
            return fn(*args, **kwargs)
        except Exception:
            logger.exception("flash card for request %s failed", self.card.request_id)
            self._crash()
            return None

    def render(self) -> Optional[dict]:
        return self.run(self.card.render)

    def _crash(self) -> None:
        self.crashed = True
        self.card.state = DISMISSED
        self.card.dismiss_reason = CRASHED
        try:
            self.on_dismiss()
        except Exception:
            logger.exception("dismiss callback failed for request %s", self.card.request_id)
