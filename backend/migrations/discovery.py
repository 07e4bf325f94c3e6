"""
Enumerating the users that have data in the legacy key-blob store.

Two interchangeable strategies share one contract: ``page(cursor, limit,
run_id)`` takes the cursor returned by the previous call (None to start) and
returns the next users, the cursor to resume from and whether the scan is
complete. Once the batch is recorded, the caller hands the page back through
``mark_seen``. Cursors are plain strings so they can be stored in the run
ledger and handed to a different process later.

- OffsetDiscovery materializes the sorted union of users on every call and
  slices it; the cursor is the offset.
- ScanCursorDiscovery walks the Redis keyspace with SCAN, one collection
  prefix at a time; the cursor is "<prefix index>:<scan cursor>". A user is
  reported once per run, under the first prefix scanned after their first
  key appears, so users with several collections are not repeated.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from errors import DiscoveryError
from storage.kv import USER_PREFIXES

SEEN_TTL_SECONDS = 7 * 24 * 3600


def seen_key(run_id: str) -> str:
    return f"migration:seen:{run_id}"


@dataclass
class DiscoveryPage:
    users: list[str]
    next_cursor: Optional[str]
    complete: bool
    total: Optional[int] = None


class UserDiscovery(Protocol):
    name: str

    def page(self, cursor: Optional[str], limit: int, run_id: str) -> DiscoveryPage: ...

    def mark_seen(self, run_id: str, users: list[str], complete: bool) -> None: ...


def collect_all_users(client: Any) -> list[str]:
    """Sorted, de-duplicated user ids across every legacy collection."""
    users: set[str] = set()
    for prefix in USER_PREFIXES:
        for key in client.scan_iter(match=f"{prefix}*", count=1000):
            user_id = key[len(prefix):].strip()
            if user_id:
                users.add(user_id)
    return sorted(users)


class OffsetDiscovery:
    name = "offset"

    def __init__(self, client: Any):
        self.client = client

    def page(self, cursor: Optional[str], limit: int, run_id: str) -> DiscoveryPage:
        try:
            offset = int(cursor) if cursor else 0
        except ValueError as exc:
            raise DiscoveryError(f"Invalid offset cursor {cursor!r}") from exc
        try:
            users = collect_all_users(self.client)
        except Exception as exc:
            raise DiscoveryError(f"Legacy keyspace scan failed: {exc}") from exc
        batch = users[offset:offset + limit]
        next_offset = offset + len(batch)
        return DiscoveryPage(
            users=batch,
            next_cursor=str(next_offset),
            complete=next_offset >= len(users),
            total=len(users),
        )

    def mark_seen(self, run_id: str, users: list[str], complete: bool) -> None:
        # The offset already records progress through the sorted list.
        return None


class ScanCursorDiscovery:
    """SCAN-based discovery. ``limit`` is a target: a single SCAN call may
    return more keys than asked for, and every user it returns is kept.

    Users already reported in a run are remembered in a Redis set
    (``migration:seen:<run_id>``), so a user is reported once per run even if
    they gain a key under an already-scanned prefix between batches. The set
    is only written by mark_seen(), after the batch is recorded in the ledger.
    """

    name = "cursor"

    def __init__(self, client: Any, scan_count: int = 100):
        self.client = client
        self.scan_count = scan_count

    @staticmethod
    def _parse(cursor: Optional[str]) -> tuple[int, int]:
        if not cursor:
            return 0, 0
        try:
            prefix_index, scan_cursor = cursor.split(":", 1)
            return int(prefix_index), int(scan_cursor)
        except ValueError as exc:
            raise DiscoveryError(f"Invalid scan cursor {cursor!r}") from exc

    def _unseen(self, run_id: str, candidates: list[str]) -> list[str]:
        if not candidates:
            return []
        pipe = self.client.pipeline(transaction=False)
        for user_id in candidates:
            pipe.sismember(seen_key(run_id), user_id)
        flags = pipe.execute()
        return [user_id for user_id, seen in zip(candidates, flags) if not seen]

    def page(self, cursor: Optional[str], limit: int, run_id: str) -> DiscoveryPage:
        prefix_index, scan_cursor = self._parse(cursor)
        users: list[str] = []
        try:
            while prefix_index < len(USER_PREFIXES) and len(users) < limit:
                prefix = USER_PREFIXES[prefix_index]
                scan_cursor, keys = self.client.scan(cursor=scan_cursor, match=f"{prefix}*", count=self.scan_count)
                candidates: list[str] = []
                for key in sorted(keys):
                    user_id = key[len(prefix):].strip()
                    if user_id and user_id not in users and user_id not in candidates:
                        candidates.append(user_id)
                users.extend(self._unseen(run_id, candidates))
                if int(scan_cursor) == 0:
                    prefix_index += 1
                    scan_cursor = 0
        except Exception as exc:
            raise DiscoveryError(f"Legacy keyspace scan failed: {exc}") from exc
        complete = prefix_index >= len(USER_PREFIXES)
        return DiscoveryPage(users=users, next_cursor=f"{prefix_index}:{int(scan_cursor)}", complete=complete)

    def mark_seen(self, run_id: str, users: list[str], complete: bool) -> None:
        key = seen_key(run_id)
        pipe = self.client.pipeline(transaction=True)
        if complete:
            pipe.delete(key)
        elif users:
            pipe.sadd(key, *users)
            pipe.expire(key, SEEN_TTL_SECONDS)
        pipe.execute()


def make_discovery(mode: str, client: Any) -> UserDiscovery:
    if mode == "cursor":
        return ScanCursorDiscovery(client)
    return OffsetDiscovery(client)
