#!/usr/bin/env python3
#contact_ledger.py
#Append-only record of which companies have been contacted and by whom.

import collections
import csv
import logging
import pathlib
import threading

import ledger_cache
import ledger_io

log = logging.getLogger(__name__)

ContactStatus = collections.namedtuple("ContactStatus", ["is_contacted", "contactor_name", "created"], defaults=(None, False))


class LedgerError(Exception):
    pass


class ValidationError(LedgerError):
    pass


class StorageError(LedgerError):
    pass


class LedgerHeaderError(StorageError):
    pass


def normalize_field(value):
    #ids often arrive as JSON numbers
    if value is None or isinstance(value, bool):
        return ""
    return str(value).strip()


class ContactLedger:
    """Owns the ledger file and the cache built from it.

       The ledger is append-only.  The active record for a company is the last appended row with
       isContacted true.  register() holds the ledger lock across the duplicate check and the append
       so at most one active row is ever written per company.  The row is written to disk before it is
       added to the cache; when the write fails the cache is left as it was and StorageError is raised.
       Lookups answer from an empty cache when the file cannot be read, registrations are refused."""

    def __init__(self, ledger_path, ttl_seconds=60):
        self.ledger_path = pathlib.Path(ledger_path)
        self.cache = ledger_cache.LedgerCache(ttl_seconds)
        self.stats = ledger_io.ledger_stats()
        self.lock = threading.RLock()
        self.read_failed = False

    def initialize(self):
        """Make sure the ledger file exists with a valid header and load it.
           A file with a bad header is refused instead of being rewritten."""
        try:
            ledger_io.create(self.ledger_path)
        except OSError as e:
            raise StorageError(f"Unable to create ledger {self.ledger_path}: {e}") from e
        try:
            header_ok = ledger_io.check_header(self.ledger_path)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Unable to read ledger {self.ledger_path}: {e}") from e
        if not header_ok:
            raise LedgerHeaderError(f"{self.ledger_path} does not start with the header {','.join(ledger_io.HEADER)}. "
                                    "Fix or move the file before starting.")
        self.reload(force=True)
        log.info(f"Ledger {self.ledger_path} loaded with {len(self.cache)} records")
        return self

    def reload(self, force=False):
        """Re-read the ledger file unless the cache is still fresh.  Read errors leave an empty cache
           and set read_failed until the next successful read."""
        with self.lock:
            if not force and not self.cache.is_stale():
                return False
            try:
                records = ledger_io.retrieve(self.ledger_path, self.stats)
                self.read_failed = False
            except (OSError, UnicodeDecodeError, csv.Error, ledger_io.HeaderMismatch) as e:
                log.error(f"Error reading ledger {self.ledger_path}. Treating it as empty. {e}")
                self.stats.read_errors += 1
                self.read_failed = True
                records = []
            self.cache.load(records)
            log.debug(f"Reloaded {len(records)} records from {self.ledger_path}")
            return True

    def _active_status(self, company_id):
        record = self.cache.get(company_id)
        if record is not None:
            return ContactStatus(True, record.contactor_name)
        return ContactStatus(False)

    def lookup(self, company_id):
        company_id = normalize_field(company_id)
        with self.lock:
            self.reload()
            status = self._active_status(company_id)
        if status.is_contacted:
            log.info(f"Company {company_id} WAS contacted by: {status.contactor_name}")
        else:
            log.info(f"Company {company_id} has NOT been contacted yet.")
        return status

    def register(self, company_id, company_name, contactor_name):
        fields = {"companyId": normalize_field(company_id),
                  "companyName": normalize_field(company_name),
                  "contactorName": normalize_field(contactor_name)}
        missing = [name for name, value in fields.items() if not value]
        if missing:
            raise ValidationError(f"Missing data ({', '.join(missing)})")
        company_id, company_name, contactor_name = fields.values()

        with self.lock:
            self.reload()
            #an empty cache from a failed read would let a duplicate through
            if self.read_failed:
                raise StorageError(f"Ledger {self.ledger_path} could not be read. Not registering {company_id}")
            existing = self._active_status(company_id)
            if existing.is_contacted:
                log.info(f"Company {company_id} already contacted by {existing.contactor_name}.")
                return existing
            record = ledger_io.ContactRecord(company_id, company_name, contactor_name, ledger_io.utc_timestamp(), True)
            try:
                ledger_io.append(self.ledger_path, record, self.stats)
            except OSError as e:
                log.error(f"Error saving contact for {company_id}. {e}")
                raise StorageError(f"Unable to append to ledger {self.ledger_path}") from e
            self.cache.append(record)
        log.info(f"Contact registered for company {company_id} by {contactor_name}")
        return ContactStatus(True, contactor_name, created=True)

    def active_records(self):
        with self.lock:
            self.reload()
            return self.cache.active_records()

    def cache_info(self):
        return self.cache.cache_info()
