"""
Token authentication for the REST API and the websocket endpoints.

The REST side keeps DRF's ``Token`` keyword.  Mobile websocket clients
cannot set an ``Authorization`` header, so the channels middleware reads
the same key from the ``token`` query string parameter instead.
"""
from __future__ import annotations

from urllib.parse import parse_qs

from asgiref.sync import sync_to_async
from channels.auth import AuthMiddlewareStack
from channels.middleware import BaseMiddleware
from django.contrib.auth.models import AnonymousUser
from rest_framework import authentication
from rest_framework.authtoken.models import Token


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token authentication with a stable import path for settings."""

    keyword = 'Token'


def _user_for_key(key: str):
    try:
        token = Token.objects.select_related('user').get(key=key)
    except Token.DoesNotExist:
        return AnonymousUser()
    if not token.user.is_active:
        return AnonymousUser()
    return token.user


class QueryTokenAuthMiddleware(BaseMiddleware):
    """Populate ``scope['user']`` from ``?token=<key>`` when present."""

    async def __call__(self, scope, receive, send):
        query = parse_qs((scope.get('query_string') or b'').decode('latin-1'))
        keys = query.get('token')
        if keys:
            scope = dict(scope, user=await sync_to_async(_user_for_key)(keys[0]))
        return await super().__call__(scope, receive, send)


def TokenAuthMiddlewareStack(inner):
    """Session auth as a fallback, query-string token taking precedence."""
    return AuthMiddlewareStack(QueryTokenAuthMiddleware(inner))
