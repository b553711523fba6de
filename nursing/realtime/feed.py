"""
Client-side store behind a caregiver's live feed.

The store is keyed by request id and patched from row-change events
(insert adds, update replaces, delete removes) instead of re-reading the
whole table on every event.  A row whose status is no longer ``live`` is
dropped, since it is no longer actionable.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional

from nursing.realtime.subscriptions import DELETE, INSERT, UPDATE
from nursing.services.emergencies import distance_to, filter_by_radius
from nursing.services.geolocation import Position

LIVE = 'live'


class LiveFeed:
    def __init__(self, *, radius_km: Optional[float] = None, origin: Optional[Position] = None):
        self.radius_km = radius_km
        self.origin = origin
        self._rows: dict[str, dict] = {}
        self._offered: set[str] = set()

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, request_id: str) -> bool:
        return str(request_id) in self._rows

    @property
    def offered_ids(self) -> set[str]:
        return set(self._offered)

    def load(self, rows: Iterable[Mapping[str, Any]], offered_ids: Iterable[str] = ()) -> None:
        """Replace the whole store with a fresh snapshot."""
        self._rows = {str(r['id']): dict(r) for r in rows if r.get('status') == LIVE}
        self._offered = {str(i) for i in offered_ids}

    def mark_offered(self, request_id: str) -> None:
        self._offered.add(str(request_id))

    def set_origin(self, origin: Optional[Position]) -> None:
        self.origin = origin

    def apply(self, event: Mapping[str, Any]) -> bool:
        """Patch the store from one change event.  Returns True if the visible list may have changed."""
        kind = event.get('event')
        new = event.get('new')
        old = event.get('old')

        if kind == DELETE:
            rid = str((old or {}).get('id', ''))
            return self._rows.pop(rid, None) is not None

        if kind not in (INSERT, UPDATE) or not new:
            return False

        rid = str(new['id'])
        if new.get('status') != LIVE:
            return self._rows.pop(rid, None) is not None
        self._rows[rid] = dict(new)
        return True

    def visible(self) -> list[dict]:
        """Live rows within radius, newest first, each with its distance and offered flag."""
        rows = sorted(self._rows.values(), key=lambda r: r.get('createdAt') or '', reverse=True)
        rows = filter_by_radius(rows, self.origin, self.radius_km)
        out = []
        for r in rows:
            d = distance_to(r, self.origin)
            out.append({
                **r,
                'distanceKm': round(d, 1) if d is not None else None,
                'offerSent': r['id'] in self._offered,
            })
        return out
