"""
Database models for the emergency nursing flow.

Three tables back the flow: approved nurse profiles (read-only from the
caregiver screens), the patients' emergency requests and the nurses'
counter-offers.  Field names follow the wire format exposed to the
mobile client so that serialization stays a flat mapping.
"""
from __future__ import annotations

import uuid

from django.conf import settings
from django.db import models


SERVICE_CHOICES = [
    ('iv_cannula', 'IV Cannula'),
    ('injection', 'Injection'),
    ('wound_dressing', 'Wound Dressing'),
    ('medication_administration', 'Medication'),
    ('vital_signs', 'Vital Signs'),
    ('catheterization', 'Catheterization'),
    ('nebulization', 'Nebulization'),
    ('blood_sugar', 'Blood Sugar'),
    ('elderly_care', 'Elderly Care'),
    ('post_surgical', 'Post-Surgical'),
]
SERVICE_LABELS = dict(SERVICE_CHOICES)


class NurseProfile(models.Model):
    """A caregiver registered on the marketplace.

    Only approved nurses may see the emergency feed or send offers.  The
    radius and default fee drive feed visibility and price pre-filling.
    """
    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_SUSPENDED = 'suspended'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_APPROVED, 'approved'),
        (STATUS_SUSPENDED, 'suspended'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='nurse_profile')
    full_name = models.CharField(max_length=255)
    services_offered = models.JSONField(default=list, blank=True)
    home_visit_radius = models.PositiveIntegerField(null=True, blank=True, help_text="km")
    city = models.CharField(max_length=120, blank=True, null=True)
    per_visit_fee = models.PositiveIntegerField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def is_approved(self) -> bool:
        return self.status == self.STATUS_APPROVED

    def __str__(self) -> str:
        return f"{self.full_name} ({self.status})"


class EmergencyRequest(models.Model):
    URGENCY_CRITICAL = 'critical'
    URGENCY_WITHIN_1_HOUR = 'within_1_hour'
    URGENCY_SCHEDULED = 'scheduled'
    URGENCY_CHOICES = (
        (URGENCY_CRITICAL, 'critical'),
        (URGENCY_WITHIN_1_HOUR, 'within_1_hour'),
        (URGENCY_SCHEDULED, 'scheduled'),
    )

    # --- Lifecycle status; offers are accepted only while live ---
    STATUS_LIVE = 'live'
    STATUS_MATCHED = 'matched'
    STATUS_CANCELLED = 'cancelled'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = (
        (STATUS_LIVE, 'live'),
        (STATUS_MATCHED, 'matched'),
        (STATUS_CANCELLED, 'cancelled'),
        (STATUS_EXPIRED, 'expired'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='emergency_requests')
    patient_name = models.CharField(max_length=255)
    patient_phone = models.CharField(max_length=32, blank=True)
    location_lat = models.FloatField()
    location_lng = models.FloatField()
    location_address = models.TextField(blank=True, null=True)
    city = models.CharField(max_length=120, blank=True, null=True)
    services_needed = models.JSONField(default=list)
    urgency = models.CharField(max_length=16, choices=URGENCY_CHOICES, default=URGENCY_CRITICAL)
    patient_offer_price = models.PositiveIntegerField(null=True, blank=True)
    notes = models.TextField(blank=True, null=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_LIVE, db_index=True)

    accepted_offer = models.ForeignKey('NurseOffer', null=True, blank=True, on_delete=models.SET_NULL, related_name='+')
    accepted_nurse = models.ForeignKey(NurseProfile, null=True, blank=True, on_delete=models.SET_NULL, related_name='matched_requests')
    cancelled_at = models.DateTimeField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'created_at'], name='nursing_req_status_created'),
        ]

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        # status as loaded, so change events can also reach subscribers of the old value
        instance._loaded_status = instance.status if 'status' in field_names else None
        return instance

    @property
    def is_live(self) -> bool:
        return self.status == self.STATUS_LIVE

    def __str__(self) -> str:
        return f"emergency {self.id} ({self.status})"


class NurseOffer(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'pending'),
        (STATUS_ACCEPTED, 'accepted'),
        (STATUS_REJECTED, 'rejected'),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request = models.ForeignKey(EmergencyRequest, on_delete=models.CASCADE, related_name='offers')
    nurse = models.ForeignKey(NurseProfile, on_delete=models.CASCADE, related_name='offers')
    offered_price = models.PositiveIntegerField()
    eta_minutes = models.PositiveIntegerField()
    message = models.TextField(blank=True, null=True)
    nurse_lat = models.FloatField(null=True, blank=True)
    nurse_lng = models.FloatField(null=True, blank=True)
    distance_km = models.FloatField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        # one offer per nurse per request; duplicates are rejected by the database
        unique_together = [('request', 'nurse')]
        indexes = [models.Index(fields=['nurse', 'created_at'], name='nursing_offer_nurse_created')]

    def __str__(self) -> str:
        return f"offer {self.id} req={self.request_id} nurse={self.nurse_id}"
