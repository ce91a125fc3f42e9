import copy
import re
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from cost_guard.core.exceptions import InvalidPasswordError, ShareNotFoundError, ViewLimitExceededError
from cost_guard.models.schemas import CacheStats, ShareOptions, ShareRecord, ShareStatistics
from cost_guard.services.cache_service import CacheService
from cost_guard.services.metrics_service import metrics_service

logger = structlog.get_logger(__name__)

SHARE_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_valid_share_id(share_id: str) -> bool:
    return bool(SHARE_ID_PATTERN.match(share_id or ""))


class ShareService:
    """Time-boxed, optionally password-protected, view-limited snapshot links.

    Records live in a ``CacheService`` whose per-entry TTL matches the
    record's ``expires_at``. Reads also compare ``expires_at`` with the
    wall clock, so a record is unreadable as soon as it expires even if the
    backing entry is still held.
    """

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.cache = cache or CacheService(name="shares")
        self._clock = clock
        self._lock = threading.RLock()

    def create_shareable_link(self, snapshot: Dict[str, Any], options: ShareOptions) -> ShareRecord:
        share_id = str(uuid.uuid4())
        created_at = self._clock()
        expires_at = created_at + timedelta(hours=options.expiration_hours)

        record = ShareRecord(
            id=share_id,
            snapshot=copy.deepcopy(snapshot),
            options=options,
            created_at=created_at,
            expires_at=expires_at,
            view_count=0,
        )

        ttl_seconds = (expires_at - self._clock()).total_seconds()
        with self._lock:
            self.cache.set(share_id, record, expire=ttl_seconds)

        logger.info("Shareable link created",
                    share_id=share_id,
                    expires_at=expires_at.isoformat(),
                    max_views=options.max_views,
                    password_protected=bool(options.password))
        return record

    def get_shared_data(self, share_id: str, password: Optional[str] = None) -> ShareRecord:
        """Read a share, counting the view.

        Raises ``ShareNotFoundError`` when absent or expired (evicting it),
        ``InvalidPasswordError`` on a password mismatch and
        ``ViewLimitExceededError`` once ``max_views`` reads have succeeded.
        """
        with self._lock:
            record: Optional[ShareRecord] = self.cache.get(share_id)

            if record is None:
                metrics_service.record_share_access("not_found")
                raise ShareNotFoundError()

            if record.expires_at <= self._clock():
                self.cache.delete(share_id)
                metrics_service.record_share_access("expired")
                raise ShareNotFoundError()

            if record.options.password and record.options.password != password:
                metrics_service.record_share_access("invalid_password")
                raise InvalidPasswordError()

            max_views = record.options.max_views
            if max_views is not None and record.view_count >= max_views:
                metrics_service.record_share_access("view_limit")
                raise ViewLimitExceededError()

            record.view_count += 1
            self.cache.replace(share_id, record)
            snapshot = record.model_copy(deep=True)

        metrics_service.record_share_access("ok")
        logger.info("Shared data viewed", share_id=share_id, view_count=snapshot.view_count)
        return snapshot

    def get_share_statistics(self, share_id: str) -> ShareStatistics:
        with self._lock:
            record: Optional[ShareRecord] = self.cache.peek(share_id)
            if record is None:
                raise ShareNotFoundError()
            return ShareStatistics(
                view_count=record.view_count,
                max_views=record.options.max_views,
                expires_at=record.expires_at,
                created_at=record.created_at,
            )

    def cleanup_expired_shares(self) -> int:
        """Evict every share whose expiry has passed"""
        with self._lock:
            now = self._clock()
            deleted = self.cache.cleanup_expired()
            for share_id in self.cache.keys():
                record: Optional[ShareRecord] = self.cache.peek(share_id)
                if record is not None and record.expires_at <= now:
                    self.cache.delete(share_id)
                    deleted += 1
            remaining = self.cache.get_stats().keys

        metrics_service.update_active_shares(remaining)
        if deleted:
            logger.info("Expired shares cleaned up", deleted=deleted, remaining=remaining)
        return deleted

    def get_all_active_shares(self) -> List[ShareRecord]:
        with self._lock:
            now = self._clock()
            active = []
            for share_id in self.cache.keys():
                record: Optional[ShareRecord] = self.cache.peek(share_id)
                if record is not None and record.expires_at > now:
                    active.append(record.model_copy(deep=True))
            return active

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear(self) -> None:
        with self._lock:
            self.cache.flush()
