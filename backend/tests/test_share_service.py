import pytest
from pydantic import ValidationError

from cost_guard.core.exceptions import InvalidPasswordError, ShareNotFoundError, ViewLimitExceededError
from cost_guard.models.schemas import ShareOptions
from cost_guard.services.share_service import ShareService, is_valid_share_id

SNAPSHOT = {"total_cost": 1234.5, "services": [{"service": "ec2", "total_cost": 1234.5}]}


class TestShareLinks:
    def test_create(self, share_service, clock):
        record = share_service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=2))

        assert is_valid_share_id(record.id)
        assert record.view_count == 0
        assert record.created_at == clock.now
        assert (record.expires_at - record.created_at).total_seconds() == 2 * 3600
        assert share_service.cache.keys() == [record.id]

    def test_tokens_are_unique(self, share_service):
        ids = {share_service.create_shareable_link(SNAPSHOT, ShareOptions()).id for _ in range(20)}
        assert len(ids) == 20

    def test_view_limit(self, share_service):
        record = share_service.create_shareable_link(SNAPSHOT, ShareOptions(max_views=2))

        assert share_service.get_shared_data(record.id).view_count == 1
        assert share_service.get_shared_data(record.id).view_count == 2
        with pytest.raises(ViewLimitExceededError):
            share_service.get_shared_data(record.id)

        assert share_service.get_share_statistics(record.id).view_count == 2

    def test_password(self, share_service):
        record = share_service.create_shareable_link(SNAPSHOT, ShareOptions(password="s3cret"))

        with pytest.raises(InvalidPasswordError):
            share_service.get_shared_data(record.id)
        with pytest.raises(InvalidPasswordError):
            share_service.get_shared_data(record.id, "S3CRET")

        shared = share_service.get_shared_data(record.id, "s3cret")
        assert shared.snapshot == SNAPSHOT
        # Failed attempts do not count as views
        assert shared.view_count == 1

    def test_returned_record_is_a_copy(self, share_service):
        record = share_service.create_shareable_link(SNAPSHOT, ShareOptions())

        shared = share_service.get_shared_data(record.id)
        shared.snapshot["total_cost"] = 0
        shared.view_count = 99

        again = share_service.get_shared_data(record.id)
        assert again.snapshot["total_cost"] == 1234.5
        assert again.view_count == 2

    def test_snapshot_is_stored_unchanged(self, share_service):
        snapshot = {"total_cost": 5.0, "services": [{"service": "ec2", "total_cost": 5.0}]}
        record = share_service.create_shareable_link(snapshot, ShareOptions(include_data=False))
        # Later changes by the caller do not reach the stored copy
        snapshot["services"].append({"service": "s3", "total_cost": 1.0})

        shared = share_service.get_shared_data(record.id)

        assert shared.snapshot == {"total_cost": 5.0, "services": [{"service": "ec2", "total_cost": 5.0}]}
        assert shared.options.include_data is False

    def test_backing_entry_expires_with_the_share(self, share_service, clock):
        record = share_service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=2))

        clock.advance(hours=2, seconds=-1)
        assert share_service.cache.peek(record.id) is not None
        clock.advance(seconds=1)
        assert share_service.cache.peek(record.id) is None

    def test_zero_view_limit_is_rejected(self):
        with pytest.raises(ValidationError):
            ShareOptions(max_views=0)

    def test_unknown_share(self, share_service):
        with pytest.raises(ShareNotFoundError):
            share_service.get_shared_data("0b6f1c1e-8f0e-4a59-9d3e-2b8f2d2f3c11")
        with pytest.raises(ShareNotFoundError):
            share_service.get_share_statistics("0b6f1c1e-8f0e-4a59-9d3e-2b8f2d2f3c11")


class TestShareExpiry:
    def test_expired_share_is_not_readable(self, clock):
        # Backing cache on real time, so only the record's own expiry applies
        service = ShareService(clock=clock)
        record = service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=1))

        clock.advance(hours=1)

        with pytest.raises(ShareNotFoundError):
            service.get_shared_data(record.id)
        # Reading an expired share evicts it
        with pytest.raises(ShareNotFoundError):
            service.get_share_statistics(record.id)

    def test_statistics_do_not_evict_or_count(self, clock):
        service = ShareService(clock=clock)
        record = service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=1))
        clock.advance(hours=2)

        stats = service.get_share_statistics(record.id)
        assert stats.view_count == 0
        assert stats.expires_at == record.expires_at
        assert service.get_share_statistics(record.id).view_count == 0

    def test_cleanup_removes_exactly_the_expired_share(self, share_service, clock):
        share_service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=1))
        kept = share_service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=48))
        assert len(share_service.get_all_active_shares()) == 2

        clock.advance(hours=2)

        assert share_service.cleanup_expired_shares() == 1
        assert share_service.get_cache_stats().keys == 1
        assert [share.id for share in share_service.get_all_active_shares()] == [kept.id]

    def test_cleanup_sweeps_records_the_cache_still_holds(self, clock):
        service = ShareService(clock=clock)
        service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=1))
        service.create_shareable_link(SNAPSHOT, ShareOptions(expiration_hours=5))
        clock.advance(hours=3)

        assert service.cleanup_expired_shares() == 1
        assert service.get_cache_stats().keys == 1

    def test_clear(self, share_service):
        share_service.create_shareable_link(SNAPSHOT, ShareOptions())
        share_service.clear()
        assert share_service.get_all_active_shares() == []


class TestShareIds:
    def test_is_valid_share_id(self):
        assert is_valid_share_id("0b6f1c1e-8f0e-4a59-9d3e-2b8f2d2f3c11")
        assert not is_valid_share_id("not-a-uuid")
        assert not is_valid_share_id("")
        assert not is_valid_share_id(None)
