"""
Caregiver offers against live emergency requests.

``submit_offer`` is the single write path for nurses.  Input is
validated before anything touches the database, the request row is
locked so a concurrent match/cancel cannot slip in between the status
check and the insert, and the (request, nurse) uniqueness constraint is
reported as :class:`DuplicateOffer` instead of a raw integrity error.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import bleach
from django.db import IntegrityError, transaction

from nursing.errors import DuplicateOffer, NotAllowed, OfferValidationError, RequestNotLive
from nursing.models import EmergencyRequest, NurseOffer, NurseProfile
from nursing.services.geo import haversine_km, round_distance
from nursing.services.geolocation import Position

logger = logging.getLogger(__name__)

COLLECTION = 'nurse_offers'
# wire fields subscribers may filter on
FILTER_FIELDS = ('id', 'requestId')

MAX_MESSAGE_LENGTH = 500
# PositiveIntegerField upper bound
MAX_INT_VALUE = 2147483647


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and n != value:
        return None
    return n if 0 < n <= MAX_INT_VALUE else None


def validate_offer_input(price: Any, eta_minutes: Any) -> tuple[int, int]:
    """Both fields are required positive integers within the column range; raises before any write."""
    if price in (None, '') or eta_minutes in (None, ''):
        raise OfferValidationError('Please fill all required fields')
    p = _positive_int(price)
    e = _positive_int(eta_minutes)
    if p is None:
        raise OfferValidationError('Price must be a positive whole number')
    if e is None:
        raise OfferValidationError('ETA must be a positive number of minutes')
    return p, e


def serialize_offer(offer: NurseOffer) -> dict:
    return {
        'id': str(offer.id),
        'requestId': str(offer.request_id),
        'nurseId': str(offer.nurse_id),
        'offeredPrice': offer.offered_price,
        'etaMinutes': offer.eta_minutes,
        'message': offer.message,
        'distanceKm': offer.distance_km,
        'status': offer.status,
        'createdAt': offer.created_at.isoformat() if offer.created_at else None,
    }


def submit_offer(nurse: NurseProfile, request_id, *, price: Any, eta_minutes: Any,
                 message: Optional[str] = None, position: Optional[Position] = None) -> NurseOffer:
    if not nurse.is_approved:
        raise NotAllowed('Only approved nurses can send offers')
    price, eta_minutes = validate_offer_input(price, eta_minutes)
    message = bleach.clean((message or '').strip(), strip=True)[:MAX_MESSAGE_LENGTH] or None

    try:
        with transaction.atomic():
            req = EmergencyRequest.objects.select_for_update().get(id=request_id)
            if not req.is_live:
                raise RequestNotLive()

            distance = None
            if position is not None:
                distance = round_distance(haversine_km(position.lat, position.lng, req.location_lat, req.location_lng))

            offer = NurseOffer.objects.create(
                request=req,
                nurse=nurse,
                offered_price=price,
                eta_minutes=eta_minutes,
                message=message,
                nurse_lat=position.lat if position else None,
                nurse_lng=position.lng if position else None,
                distance_km=distance,
                status=NurseOffer.STATUS_PENDING,
            )
    except IntegrityError:
        if NurseOffer.objects.filter(request_id=request_id, nurse=nurse).exists():
            logger.info("duplicate offer from nurse %s on request %s", nurse.id, request_id)
            raise DuplicateOffer()
        raise

    logger.info("offer %s submitted by nurse %s on request %s", offer.id, nurse.id, request_id)
    return offer


def offered_request_ids(nurse: NurseProfile) -> list[str]:
    return [str(rid) for rid in NurseOffer.objects.filter(nurse=nurse).values_list('request_id', flat=True)]


def list_offers_for_request(patient, request_id) -> list[dict]:
    req = EmergencyRequest.objects.get(id=request_id)
    if req.patient_id != patient.pk:
        raise NotAllowed('Only the requesting patient can view offers')
    offers = req.offers.select_related('nurse').order_by('-created_at')
    data = []
    for o in offers:
        item = serialize_offer(o)
        item['nurse'] = {
            'id': str(o.nurse_id),
            'fullName': o.nurse.full_name,
            'city': o.nurse.city,
        }
        data.append(item)
    return data


@transaction.atomic
def accept_offer(patient, offer_id) -> EmergencyRequest:
    """Patient picks one offer: the request is matched and sibling offers rejected."""
    offer = NurseOffer.objects.select_related('request').get(id=offer_id)
    req = EmergencyRequest.objects.select_for_update().get(id=offer.request_id)
    if req.patient_id != patient.pk:
        raise NotAllowed('Only the requesting patient can accept offers')
    if not req.is_live:
        raise RequestNotLive()
    if offer.status != NurseOffer.STATUS_PENDING:
        raise RequestNotLive('This offer is no longer pending')

    # row by row so every status change reaches the offer subscribers
    for o in NurseOffer.objects.select_for_update().filter(request=req):
        status = NurseOffer.STATUS_ACCEPTED if o.id == offer.id else NurseOffer.STATUS_REJECTED
        if o.status != status:
            o.status = status
            o.save(update_fields=['status'])

    req.status = EmergencyRequest.STATUS_MATCHED
    req.accepted_offer_id = offer.id
    req.accepted_nurse_id = offer.nurse_id
    req.save(update_fields=['status', 'accepted_offer', 'accepted_nurse', 'updated_at'])
    logger.info("request %s matched with offer %s", req.id, offer.id)
    return req
