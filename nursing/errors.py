"""
Domain errors raised by the emergency services.

Each error carries the machine readable ``code`` sent to the client and
the HTTP status the REST views answer with.  The duplicate-offer rule is
its own variant so callers never inspect raw database error codes.
"""


class OfferError(Exception):
    code = 'offer_error'
    status_code = 400
    default_message = 'Failed to submit offer, please try again'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class OfferValidationError(OfferError):
    code = 'validation_error'
    default_message = 'Please fill all required fields'


class DuplicateOffer(OfferError):
    code = 'duplicate_offer'
    status_code = 409
    default_message = "You've already sent an offer for this request"


class RequestNotLive(OfferError):
    code = 'request_not_live'
    status_code = 409
    default_message = 'This request is no longer available'


class NotAllowed(OfferError):
    code = 'forbidden'
    status_code = 403
    default_message = 'Not allowed'
