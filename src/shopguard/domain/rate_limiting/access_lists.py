"""
Allow/Deny Lists

Static identity overrides checked before any quota logic. Deny wins when an
identity matches both lists. Expired entries are ignored at lookup time, so
``purge_expired`` is housekeeping only.

Both lists use the same read-copy-update discipline as the rule registry.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from structlog import get_logger

from .entities import AccessListEntry, AccessListKind
from .value_objects import ClientIdentity

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccessLists:
    """Allow and deny lists keyed by entry pattern."""

    def __init__(
        self,
        allow: Iterable[AccessListEntry] = (),
        deny: Iterable[AccessListEntry] = (),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._clock = clock
        self._write_lock = threading.Lock()
        self._lists: Dict[AccessListKind, Mapping[str, AccessListEntry]] = {
            AccessListKind.ALLOW: {e.pattern: e for e in allow},
            AccessListKind.DENY: {e.pattern: e for e in deny},
        }

    def _match(self, kind: AccessListKind, identity: ClientIdentity) -> Optional[AccessListEntry]:
        entries = self._lists[kind]
        exact = entries.get(identity.tag)
        now = self._clock()
        if exact is not None and not exact.is_expired(now):
            return exact
        for entry in entries.values():
            if entry is exact or entry.is_expired(now):
                continue
            if entry.matches(identity):
                return entry
        return None

    def denied_by(self, identity: ClientIdentity) -> Optional[AccessListEntry]:
        return self._match(AccessListKind.DENY, identity)

    def allowed_by(self, identity: ClientIdentity) -> Optional[AccessListEntry]:
        return self._match(AccessListKind.ALLOW, identity)

    def is_denied(self, identity: ClientIdentity) -> bool:
        return self.denied_by(identity) is not None

    def is_allowed(self, identity: ClientIdentity) -> bool:
        """True if an allow entry matches and no deny entry does."""
        return not self.is_denied(identity) and self.allowed_by(identity) is not None

    def add(self, kind: AccessListKind, entry: AccessListEntry) -> None:
        """Add or replace the entry with the same pattern."""
        kind = AccessListKind(kind)
        with self._write_lock:
            snapshot = dict(self._lists[kind])
            snapshot[entry.pattern] = entry
            self._publish(kind, snapshot)
        logger.info(
            "rate_limit_access_entry_added",
            list=kind.value,
            pattern=entry.pattern,
            expires_at=entry.expires_at.isoformat() if entry.expires_at else None,
            reason=entry.reason,
        )

    def remove(self, kind: AccessListKind, pattern: str) -> bool:
        """Remove an entry by pattern. Returns False if it was not present."""
        kind = AccessListKind(kind)
        with self._write_lock:
            if pattern not in self._lists[kind]:
                return False
            snapshot = dict(self._lists[kind])
            del snapshot[pattern]
            self._publish(kind, snapshot)
        logger.info("rate_limit_access_entry_removed", list=kind.value, pattern=pattern)
        return True

    def entries(self, kind: AccessListKind, include_expired: bool = False) -> List[AccessListEntry]:
        now = self._clock()
        return sorted(
            (e for e in self._lists[AccessListKind(kind)].values() if include_expired or not e.is_expired(now)),
            key=lambda e: e.pattern,
        )

    def purge_expired(self) -> int:
        """Drop expired entries from both lists. Returns how many were dropped."""
        purged = 0
        with self._write_lock:
            now = self._clock()
            for kind in AccessListKind:
                current = self._lists[kind]
                kept = {p: e for p, e in current.items() if not e.is_expired(now)}
                if len(kept) != len(current):
                    purged += len(current) - len(kept)
                    self._publish(kind, kept)
        if purged:
            logger.info("rate_limit_access_entries_purged", count=purged)
        return purged

    def _publish(self, kind: AccessListKind, snapshot: Dict[str, AccessListEntry]) -> None:
        lists = dict(self._lists)
        lists[kind] = snapshot
        self._lists = lists
