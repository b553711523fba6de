import logging

from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from nursing.errors import OfferError

logger = logging.getLogger(__name__)


def error_response(exc: OfferError) -> Response:
    return Response({'ok': False, 'error': {'code': exc.code, 'message': exc.message}}, status=exc.status_code)


def api_exception_handler(exc, context):
    if isinstance(exc, OfferError):
        return error_response(exc)
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception("unhandled error in %s", context.get('view'), exc_info=exc)
        return Response({'ok': False, 'error': {'code': 'server_error', 'message': 'Internal server error'}}, status=500)
    # normalize response
    if isinstance(exc, ValidationError):
        return Response({'ok': False, 'error': {'code': 'validation_error', 'message': resp.data}}, status=resp.status_code)
    detail = None
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response({'ok': False, 'error': {'code': 'api_error', 'message': detail}}, status=resp.status_code)
