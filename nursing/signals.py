"""
Publish emergency request and offer row changes to websocket subscribers.

Events are sent after the surrounding transaction commits, so
subscribers never observe a status that was rolled back.
"""
from functools import partial

from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from nursing.models import EmergencyRequest, NurseOffer
from nursing.realtime.subscriptions import DELETE, INSERT, UPDATE, publish_change
from nursing.services import offers
from nursing.services.emergencies import COLLECTION, serialize_request


@receiver(post_save, sender=EmergencyRequest, dispatch_uid='nursing.emergency_request.saved')
def emergency_request_saved(sender, instance: EmergencyRequest, created: bool, **kwargs):
    new = serialize_request(instance)
    old_status = getattr(instance, '_loaded_status', None)
    old = None if created else {'id': new['id'], 'status': old_status or instance.status}
    instance._loaded_status = instance.status
    transaction.on_commit(partial(publish_change, COLLECTION, INSERT if created else UPDATE, new=new, old=old))


@receiver(post_delete, sender=EmergencyRequest, dispatch_uid='nursing.emergency_request.deleted')
def emergency_request_deleted(sender, instance: EmergencyRequest, **kwargs):
    old = serialize_request(instance)
    transaction.on_commit(partial(publish_change, COLLECTION, DELETE, new=None, old=old))


@receiver(post_save, sender=NurseOffer, dispatch_uid='nursing.nurse_offer.saved')
def nurse_offer_saved(sender, instance: NurseOffer, created: bool, **kwargs):
    new = offers.serialize_offer(instance)
    # an offer never moves to another request
    old = None if created else {'id': new['id'], 'requestId': new['requestId']}
    transaction.on_commit(partial(
        publish_change, offers.COLLECTION, INSERT if created else UPDATE,
        new=new, old=old, fields=offers.FILTER_FIELDS,
    ))
