"""
REST endpoints of the emergency request/offer flow.

Caregiver endpoints require an approved nurse profile; patient endpoints
only require authentication and check ownership in the services.
"""
from django.core.exceptions import ObjectDoesNotExist
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from nursing.exceptions import error_response
from nursing.errors import OfferError
from nursing.permissions import IsApprovedNurse, approved_nurse_for
from nursing.serializers.emergency import FeedQuerySerializer, OfferSubmitSerializer, RequestCreateSerializer
from nursing.services.emergencies import cancel_request, create_request, live_feed_for, serialize_request
from nursing.services.geolocation import Position
from nursing.services.offers import (
    accept_offer,
    list_offers_for_request,
    offered_request_ids,
    serialize_offer,
    submit_offer,
)


def _not_found(what: str):
    return Response({'ok': False, 'error': {'code': 'not_found', 'message': f'{what} not found'}}, status=404)


@api_view(['GET'])
@permission_classes([IsApprovedNurse])
def emergency_feed(request):
    q = FeedQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    vd = q.validated_data
    origin = Position(vd['lat'], vd['lng']) if 'lat' in vd else None
    rows, offered = live_feed_for(approved_nurse_for(request.user), origin)
    return Response({'ok': True, 'data': rows, 'offeredRequestIds': offered})


@api_view(['GET'])
@permission_classes([IsApprovedNurse])
def my_offers(request):
    return Response({'ok': True, 'requestIds': offered_request_ids(approved_nurse_for(request.user))})


@api_view(['POST'])
@permission_classes([IsApprovedNurse])
def offer_submit(request):
    s = OfferSubmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    position = None
    if vd.get('lat') is not None and vd.get('lng') is not None:
        position = Position(vd['lat'], vd['lng'])
    try:
        offer = submit_offer(
            approved_nurse_for(request.user),
            vd['requestId'],
            price=vd.get('offeredPrice'),
            eta_minutes=vd.get('etaMinutes'),
            message=vd.get('message'),
            position=position,
        )
    except ObjectDoesNotExist:
        return _not_found('Request')
    except OfferError as e:
        return error_response(e)
    return Response({'ok': True, 'offer': serialize_offer(offer)}, status=201)

offer_submit.cls.throttle_scope = 'offer_write'


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def request_create(request):
    s = RequestCreateSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data
    try:
        req = create_request(
            request.user,
            patient_name=vd['patientName'],
            patient_phone=vd.get('patientPhone', ''),
            location_lat=vd['locationLat'],
            location_lng=vd['locationLng'],
            location_address=vd.get('locationAddress'),
            city=vd.get('city'),
            services_needed=vd['servicesNeeded'],
            urgency=vd['urgency'],
            patient_offer_price=vd.get('patientOfferPrice'),
            notes=vd.get('notes'),
        )
    except ValueError as e:
        return Response({'ok': False, 'error': {'code': 'validation_error', 'message': str(e)}}, status=400)
    return Response({'ok': True, 'request': serialize_request(req)}, status=201)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def request_cancel(request, request_id):
    try:
        req = cancel_request(request.user, request_id)
    except ObjectDoesNotExist:
        return _not_found('Request')
    except OfferError as e:
        return error_response(e)
    return Response({'ok': True, 'request': serialize_request(req)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def request_offers(request, request_id):
    try:
        data = list_offers_for_request(request.user, request_id)
    except ObjectDoesNotExist:
        return _not_found('Request')
    except OfferError as e:
        return error_response(e)
    return Response({'ok': True, 'data': data})


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def offer_accept(request, offer_id):
    try:
        req = accept_offer(request.user, offer_id)
    except ObjectDoesNotExist:
        return _not_found('Offer')
    except OfferError as e:
        return error_response(e)
    return Response({'ok': True, 'request': serialize_request(req), 'acceptedOfferId': str(req.accepted_offer_id)})

offer_accept.cls.throttle_scope = 'offer_write'
