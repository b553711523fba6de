"""
Row-change subscriptions over the channel layer.

A subscription names a collection and an optional equality filter
written the way the mobile client already writes them
(``status=eq.live``, ``id=eq.<uuid>``).  Each subscription maps onto one
channel-layer group; publishers send a change event to every group whose
filter matches either the old or the new version of the row, so that a
row leaving a filter (live -> matched) still reaches the subscribers that
were watching it.

Event format delivered to consumers::

    {"type": "row.change", "collection": "...", "event": "INSERT|UPDATE|DELETE",
     "new": {...} | None, "old": {...} | None}
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

INSERT = 'INSERT'
UPDATE = 'UPDATE'
DELETE = 'DELETE'
EVENTS = (INSERT, UPDATE, DELETE)

EVENT_TYPE = 'row.change'


@dataclass(frozen=True)
class Subscription:
    collection: str
    field: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def parse(cls, collection: str, filter_expr: Optional[str] = None) -> 'Subscription':
        """Build a subscription from ``field=eq.value`` (only ``eq`` is supported)."""
        if not filter_expr:
            return cls(collection)
        field, sep, rest = filter_expr.partition('=')
        op, dot, value = rest.partition('.')
        if not sep or not dot or op != 'eq' or not field or not value:
            raise ValueError(f'unsupported filter: {filter_expr!r}')
        return cls(collection, field, value)

    @property
    def group(self) -> str:
        if self.field is None:
            return self.collection
        return f"{self.collection}.{self.field}.{self.value}"

    def matches(self, row: Optional[Mapping[str, Any]]) -> bool:
        if row is None:
            return False
        if self.field is None:
            return True
        return str(row.get(self.field)) == self.value


async def subscribe(channel_layer, channel_name: str, sub: Subscription) -> None:
    await channel_layer.group_add(sub.group, channel_name)


async def unsubscribe(channel_layer, channel_name: str, sub: Subscription) -> None:
    await channel_layer.group_discard(sub.group, channel_name)


def groups_for_change(collection: str, rows: Iterable[Optional[Mapping[str, Any]]], fields: Iterable[str]) -> list[str]:
    groups = {collection}
    fields = list(fields)
    for row in rows:
        if row is None:
            continue
        for f in fields:
            if row.get(f) is not None:
                groups.add(Subscription(collection, f, str(row.get(f))).group)
    return sorted(groups)


def publish_change(collection: str, event: str, *, new: Optional[dict], old: Optional[dict],
                   fields: Iterable[str] = ('id', 'status')) -> list[str]:
    """Send one change event to every matching group.  Returns the groups used."""
    if event not in EVENTS:
        raise ValueError(f'unknown event {event!r}')
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return []
    payload = {
        "type": EVENT_TYPE,
        "collection": collection,
        "event": event,
        "new": new,
        "old": old,
    }
    groups = groups_for_change(collection, (new, old), fields)
    for g in groups:
        async_to_sync(channel_layer.group_send)(g, payload)
    logger.debug("published %s on %s to %d groups", event, collection, len(groups))
    return groups
