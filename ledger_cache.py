import collections
import sys
import threading
import time
import resource


CacheInfo = collections.namedtuple("CacheInfo", ["hits", "misses", "expired", "records", "companies", "age_seconds", "ttl_seconds", "cache_bytes", "app_kbytes"])


class LedgerCache:
    """In-memory copy of the ledger. Records are kept in append order and an index maps each
       companyId to its most recently appended active record.  The whole snapshot expires
       ttl_seconds after it was loaded.  A ttl below zero never expires."""

    def __init__(self, ttl_seconds=60):
        self.ttl_seconds = ttl_seconds
        self.records = []
        self.index = {}
        self.loaded_at = None
        self.hit = self.miss = self.expired = 0
        self.update_lock = threading.Lock()

    def __len__(self):
        return len(self.records)

    def __contains__(self, company_id):
        return company_id in self.index

    def cache_info(self):
        """Report cache statistics"""
        age = None if self.loaded_at is None else round(time.monotonic() - self.loaded_at, 3)
        return CacheInfo(self.hit, self.miss, self.expired, len(self.records), len(self.index), age, self.ttl_seconds,
                         sys.getsizeof(self.records) + sys.getsizeof(self.index), resource.getrusage(resource.RUSAGE_SELF).ru_maxrss)

    def reset_info(self):
        self.hit = self.miss = self.expired = 0

    def is_stale(self):
        """An empty or never loaded cache is always stale"""
        if self.loaded_at is None or not self.records:
            return True
        if self.ttl_seconds < 0:
            return False
        if time.monotonic() - self.loaded_at >= self.ttl_seconds:
            self.expired += 1
            return True
        return False

    def load(self, records):
        """Replace the snapshot with records (in file order) and rebuild the index"""
        index = {}
        for record in records:
            if record.is_contacted:
                index[record.company_id] = record
        with self.update_lock:
            self.records = list(records)
            self.index = index
            self.loaded_at = time.monotonic()

    def append(self, record):
        with self.update_lock:
            self.records.append(record)
            if record.is_contacted:
                self.index[record.company_id] = record

    def get(self, company_id, default_value=None):
        record = self.index.get(company_id)
        if record is None:
            self.miss += 1
            return default_value
        self.hit += 1
        return record

    def active_records(self):
        """Latest active record per company in the order each was appended"""
        return [record for record in self.records if self.index.get(record.company_id) is record]

    def clear(self):
        with self.update_lock:
            self.records = []
            self.index = {}
            self.loaded_at = None
