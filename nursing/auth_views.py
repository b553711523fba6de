"""
Username/password login for the mobile client.

The returned key is sent as ``Authorization: Token <key>`` on REST calls
and as ``?token=<key>`` on the websocket endpoints.
"""
from __future__ import annotations

import logging

from django.contrib.auth import authenticate
from rest_framework.authtoken.models import Token
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from nursing.permissions import approved_nurse_for
from nursing.serializers.auth import LoginSerializer

logger = logging.getLogger(__name__)


@api_view(['POST'])
@permission_classes([AllowAny])
def login_view(request):
    s = LoginSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    vd = s.validated_data

    user = authenticate(request, username=vd['username'], password=vd['password'])
    if not user:
        logger.info("failed login for %r from %s", vd['username'], request.META.get('REMOTE_ADDR'))
        return Response({'ok': False, 'error': {'code': 'invalid_credentials',
                                                'message': 'Invalid username or password'}}, status=400)

    token_obj, _ = Token.objects.get_or_create(user=user)
    nurse = approved_nurse_for(user)
    payload: dict[str, object] = {
        'ok': True,
        'token': token_obj.key,
        'user': {
            'id': user.id,
            'username': user.username,
            'name': user.get_full_name() or user.username,
        },
        'nurse': {'id': str(nurse.id), 'fullName': nurse.full_name, 'city': nurse.city} if nurse else None,
    }
    return Response(payload, status=200)

# ScopedRateThrottle reads throttle_scope from the wrapped APIView class
login_view.cls.throttle_scope = 'login'
