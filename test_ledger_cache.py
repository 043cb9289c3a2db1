"""
Tests for the in-memory ledger cache

Run with: pytest test_ledger_cache.py -v
"""

import time
from ledger_cache import LedgerCache
from ledger_io import ContactRecord


def rec(company_id, contactor, active=True):
    return ContactRecord(company_id, "Company " + company_id, contactor, "2024-01-01T00:00:00.000Z", active)


class TestIndex:
    """companyId -> latest active record"""

    def test_last_active_row_wins(self):
        cache = LedgerCache()
        cache.load([rec("1", "first"), rec("2", "other"), rec("1", "second")])
        assert cache.get("1").contactor_name == "second"
        assert cache.get("2").contactor_name == "other"

    def test_inactive_row_does_not_clear_earlier_active(self):
        """Same answer as scanning backwards for the first active row"""
        cache = LedgerCache()
        cache.load([rec("1", "first"), rec("1", "later", active=False)])
        assert cache.get("1").contactor_name == "first"

    def test_inactive_only_company_is_missing(self):
        cache = LedgerCache()
        cache.load([rec("1", "x", active=False)])
        assert "1" not in cache
        assert cache.get("1") is None

    def test_append_updates_index(self):
        cache = LedgerCache()
        cache.load([])
        cache.append(rec("5", "J. Smith"))
        assert len(cache) == 1
        assert cache.get("5").contactor_name == "J. Smith"

    def test_active_records_one_per_company(self):
        cache = LedgerCache()
        cache.load([rec("1", "a"), rec("2", "b"), rec("1", "c"), rec("3", "d", active=False)])
        assert [(r.company_id, r.contactor_name) for r in cache.active_records()] == [("2", "b"), ("1", "c")]


class TestExpiration:
    """Snapshot staleness"""

    def test_never_loaded_is_stale(self):
        assert LedgerCache().is_stale()

    def test_empty_snapshot_is_stale(self):
        cache = LedgerCache(ttl_seconds=600)
        cache.load([])
        assert cache.is_stale()

    def test_fresh_snapshot_is_not_stale(self):
        cache = LedgerCache(ttl_seconds=600)
        cache.load([rec("1", "a")])
        assert not cache.is_stale()

    def test_snapshot_expires_after_ttl(self):
        cache = LedgerCache(ttl_seconds=60)
        cache.load([rec("1", "a")])
        cache.loaded_at = time.monotonic() - 61
        assert cache.is_stale()
        assert cache.expired == 1

    def test_negative_ttl_never_expires(self):
        cache = LedgerCache(ttl_seconds=-1)
        cache.load([rec("1", "a")])
        cache.loaded_at = time.monotonic() - 100000
        assert not cache.is_stale()


class TestStatistics:

    def test_hits_and_misses_counted(self):
        cache = LedgerCache()
        cache.load([rec("1", "a")])
        cache.get("1")
        cache.get("2")
        cache.get("2")
        info = cache.cache_info()
        assert (info.hits, info.misses) == (1, 2)
        assert info.records == 1
        assert info.companies == 1
        cache.reset_info()
        assert cache.cache_info().misses == 0

    def test_clear(self):
        cache = LedgerCache()
        cache.load([rec("1", "a")])
        cache.clear()
        assert len(cache) == 0
        assert cache.cache_info().age_seconds is None
