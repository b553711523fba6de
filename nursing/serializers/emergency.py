import math

from rest_framework import serializers

from nursing.models import SERVICE_CHOICES, EmergencyRequest


def _finite(v):
    if v is not None and not math.isfinite(v):
        raise serializers.ValidationError('must be a finite number')
    return v


class CoordinateMixin:
    def validate_lat(self, v):
        return _finite(v)

    def validate_lng(self, v):
        return _finite(v)


class FeedQuerySerializer(CoordinateMixin, serializers.Serializer):
    lat = serializers.FloatField(min_value=-90, max_value=90, required=False)
    lng = serializers.FloatField(min_value=-180, max_value=180, required=False)

    def validate(self, attrs):
        if ('lat' in attrs) != ('lng' in attrs):
            raise serializers.ValidationError('lat and lng must be given together')
        return attrs


class OfferSubmitSerializer(CoordinateMixin, serializers.Serializer):
    requestId = serializers.UUIDField()
    # price and ETA are validated by the offer service so every entry point shares one rule
    offeredPrice = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    etaMinutes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    message = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    lat = serializers.FloatField(min_value=-90, max_value=90, required=False, allow_null=True)
    lng = serializers.FloatField(min_value=-180, max_value=180, required=False, allow_null=True)


class RequestCreateSerializer(serializers.Serializer):
    patientName = serializers.CharField(max_length=120)
    patientPhone = serializers.CharField(max_length=32, required=False, allow_blank=True)
    locationLat = serializers.FloatField(min_value=-90, max_value=90)
    locationLng = serializers.FloatField(min_value=-180, max_value=180)
    locationAddress = serializers.CharField(max_length=255, required=False, allow_blank=True)
    city = serializers.CharField(max_length=80, required=False, allow_blank=True)
    servicesNeeded = serializers.ListField(child=serializers.ChoiceField(choices=SERVICE_CHOICES), allow_empty=False)
    urgency = serializers.ChoiceField(choices=EmergencyRequest.URGENCY_CHOICES)
    patientOfferPrice = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    notes = serializers.CharField(max_length=1000, required=False, allow_blank=True, allow_null=True)

    def validate_locationLat(self, v):
        return _finite(v)

    def validate_locationLng(self, v):
        return _finite(v)
