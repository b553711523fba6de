"""
Emergency request store access.

Reads for the caregiver feed and the patient-side lifecycle operations
(create, cancel, expire).  Status transitions are written through
``save()`` so that the change publishers in ``nursing.signals`` see them.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, Optional

import bleach
from django.db import transaction
from django.utils import timezone

from nursing.errors import NotAllowed, RequestNotLive
from nursing.models import EmergencyRequest, NurseProfile, SERVICE_LABELS
from nursing.services.geo import haversine_km, within_radius
from nursing.services.geocoding import try_reverse_geocode
from nursing.services.geolocation import Position
from nursing.services.offers import offered_request_ids

logger = logging.getLogger(__name__)

COLLECTION = 'emergency_requests'


def serialize_request(req: EmergencyRequest) -> dict:
    return {
        'id': str(req.id),
        'patientName': req.patient_name,
        'locationLat': req.location_lat,
        'locationLng': req.location_lng,
        'locationAddress': req.location_address,
        'city': req.city,
        'servicesNeeded': list(req.services_needed or []),
        'urgency': req.urgency,
        'patientOfferPrice': req.patient_offer_price,
        'notes': req.notes,
        'status': req.status,
        'createdAt': req.created_at.isoformat() if req.created_at else None,
    }


def list_live_requests() -> list[dict]:
    qs = EmergencyRequest.objects.filter(status=EmergencyRequest.STATUS_LIVE).order_by('-created_at')
    return [serialize_request(r) for r in qs]


def distance_to(row: dict, origin: Optional[Position]) -> Optional[float]:
    if origin is None:
        return None
    return haversine_km(origin.lat, origin.lng, row['locationLat'], row['locationLng'])


def filter_by_radius(rows: Iterable[dict], origin: Optional[Position], radius_km: Optional[float]) -> list[dict]:
    """Keep rows within ``radius_km`` of ``origin``; without either, keep everything."""
    rows = list(rows)
    if origin is None or not radius_km:
        return rows
    return [r for r in rows if within_radius(distance_to(r, origin), radius_km)]


def live_feed_for(nurse: NurseProfile, origin: Optional[Position]) -> tuple[list[dict], list[str]]:
    """The two reads behind the caregiver feed: visible live requests and offered request ids."""
    rows = filter_by_radius(list_live_requests(), origin, nurse.home_visit_radius)
    for r in rows:
        d = distance_to(r, origin)
        r['distanceKm'] = round(d, 1) if d is not None else None
    return rows, offered_request_ids(nurse)


def _clean(text: Optional[str]) -> Optional[str]:
    text = bleach.clean((text or '').strip(), strip=True)
    return text or None


def create_request(patient, *, patient_name: str, location_lat: float, location_lng: float,
                   services_needed: list[str], urgency: str = EmergencyRequest.URGENCY_CRITICAL,
                   patient_phone: str = '', location_address: Optional[str] = None,
                   city: Optional[str] = None, patient_offer_price: Optional[int] = None,
                   notes: Optional[str] = None) -> EmergencyRequest:
    unknown = [s for s in services_needed if s not in SERVICE_LABELS]
    if not services_needed or unknown:
        raise ValueError('Please select at least one valid service')

    location_address = _clean(location_address)
    city = _clean(city)
    if not location_address or not city:
        place = try_reverse_geocode(location_lat, location_lng)
        if place:
            location_address = location_address or place.address
            city = city or place.city

    req = EmergencyRequest.objects.create(
        patient=patient,
        patient_name=_clean(patient_name) or '',
        patient_phone=(patient_phone or '').strip(),
        location_lat=location_lat,
        location_lng=location_lng,
        location_address=location_address,
        city=city,
        services_needed=list(dict.fromkeys(services_needed)),
        urgency=urgency,
        patient_offer_price=patient_offer_price,
        notes=_clean(notes),
    )
    logger.info("emergency request %s created by user %s (%s)", req.id, patient.pk, req.urgency)
    return req


@transaction.atomic
def cancel_request(patient, request_id) -> EmergencyRequest:
    req = EmergencyRequest.objects.select_for_update().get(id=request_id)
    if req.patient_id != patient.pk:
        raise NotAllowed('Only the requesting patient can cancel')
    if not req.is_live:
        raise RequestNotLive()
    req.status = EmergencyRequest.STATUS_CANCELLED
    req.cancelled_at = timezone.now()
    req.save(update_fields=['status', 'cancelled_at', 'updated_at'])
    logger.info("emergency request %s cancelled", req.id)
    return req


def expire_stale_requests(older_than: timedelta, *, now=None) -> list[str]:
    """Move live requests created before ``now - older_than`` to expired."""
    now = now or timezone.now()
    cutoff = now - older_than
    expired = []
    stale = EmergencyRequest.objects.filter(status=EmergencyRequest.STATUS_LIVE, created_at__lt=cutoff).values_list('id', flat=True)
    for rid in list(stale):
        with transaction.atomic():
            req = EmergencyRequest.objects.select_for_update().get(id=rid)
            # may have been matched or cancelled since the scan
            if not req.is_live:
                continue
            req.status = EmergencyRequest.STATUS_EXPIRED
            req.save(update_fields=['status', 'updated_at'])
            expired.append(str(req.id))
    if expired:
        logger.info("expired %d stale emergency requests", len(expired))
    return expired
