import collections
import csv
import datetime
import io
import logging
import os
import pathlib
import threading

log = logging.getLogger(__name__)

HEADER = ["companyId", "companyName", "contactorName", "timestamp", "isContacted"]
#Files written before the contactor column was renamed
LEGACY_HEADER = ["companyId", "companyName", "gpgName", "timestamp", "isContacted"]

ContactRecord = collections.namedtuple("ContactRecord", ["company_id", "company_name", "contactor_name", "timestamp", "is_contacted"])

file_lock = threading.Lock()


class HeaderMismatch(Exception):
    pass


class ledger_stats:
    def __init__(self, reads=0, appends=0, skipped=0, read_errors=0):
        self.reads = reads
        self.appends = appends
        self.skipped = skipped
        self.read_errors = read_errors

    def __repr__(self):
        return f"ledger_stats(reads={self.reads},appends={self.appends},skipped={self.skipped},read_errors={self.read_errors})"


def utc_timestamp(when=None):
    when = when or datetime.datetime.now(datetime.timezone.utc)
    return when.strftime("%Y-%m-%dT%H:%M:%S.") + f"{when.microsecond // 1000:03d}Z"


def parse_bool(value):
    return str(value).strip().lower() == "true"


def serialize(record):
    """Render one record as a single CSV line, quoting values that need it"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([record.company_id, record.company_name, record.contactor_name, record.timestamp,
                     "true" if record.is_contacted else "false"])
    return buffer.getvalue()


def header_line():
    return ",".join(HEADER) + "\n"


def clean_field(field):
    """Bytes that were not valid UTF-8 (kept by surrogateescape) become U+FFFD"""
    return field.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def is_decodable(field):
    try:
        field.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def parse(text, stats=None):
    """Parse ledger text (header included) into a list of ContactRecord in file order.
       Raises HeaderMismatch if the first non blank row is not a known header.
       Malformed rows and rows whose companyId is not valid UTF-8 are logged and skipped."""
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    header = None
    records = []
    error_line = None
    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            if reader.line_num == error_line:
                raise
            error_line = reader.line_num
            log.warning(f"Skipping malformed ledger row at line {reader.line_num}. {e}")
            if stats is not None:
                stats.skipped += 1
            continue
        if not row or not any(field.strip() for field in row):
            continue
        row = [field.strip() for field in row]
        if header is None:
            if row not in (HEADER, LEGACY_HEADER):
                raise HeaderMismatch(f"Unexpected ledger header {row}")
            header = row
            continue
        #short rows are padded, extra columns ignored
        row = (row + [""] * len(HEADER))[:len(HEADER)]
        if not is_decodable(row[0]):
            log.warning(f"Skipping ledger row at line {reader.line_num}. companyId is not valid UTF-8")
            if stats is not None:
                stats.skipped += 1
            continue
        if not all(is_decodable(field) for field in row):
            log.warning(f"Ledger row at line {reader.line_num} has bytes that are not valid UTF-8. Replacing them.")
            row = [clean_field(field) for field in row]
        company_id, company_name, contactor_name, timestamp, is_contacted = row
        records.append(ContactRecord(company_id, company_name, contactor_name, timestamp, parse_bool(is_contacted)))
    return records


def read_header(ledger_path):
    """First non blank row of the file with fields trimmed. [] for a blank file."""
    with open(ledger_path, newline="", encoding="utf-8-sig", errors="surrogateescape") as fh:
        for line in fh:
            if line.strip():
                return [field.strip() for field in next(csv.reader([line]), [])]
    return []


def ends_with_newline(ledger_path):
    with open(ledger_path, "rb") as fh:
        fh.seek(0, os.SEEK_END)
        if fh.tell() == 0:
            return True
        fh.seek(-1, os.SEEK_END)
        return fh.read(1) == b"\n"


def check_header(ledger_path):
    """Return True if the file starts with the current or legacy header"""
    return read_header(ledger_path) in (HEADER, LEGACY_HEADER)


def create(ledger_path):
    """Create the parent directory and a ledger file holding only the header row.
       An existing file that has content is left alone."""
    ledger_path = pathlib.Path(ledger_path)
    ledger_path.parent.mkdir(parents=True, exist_ok=True)
    if ledger_path.exists() and read_header(ledger_path):
        return False
    with file_lock:
        with open(ledger_path, "w", newline="", encoding="utf-8") as fh:
            fh.write(header_line())
    log.info(f"Ledger file created with headers at {ledger_path}")
    return True


def retrieve(ledger_path, stats=None):
    """Read every record in the ledger. Missing or empty files are an empty ledger."""
    ledger_path = pathlib.Path(ledger_path)
    if not ledger_path.exists():
        log.info(f"Ledger file {ledger_path} does not exist.")
        return []
    with open(ledger_path, "rb") as fh:
        text = fh.read().decode("utf-8-sig", "surrogateescape")
    if not text.strip():
        log.info(f"Ledger file {ledger_path} is empty.")
        return []
    records = parse(text, stats)
    if stats is not None:
        stats.reads += 1
    return records


def append(ledger_path, record, stats=None):
    """Append one record to the end of the ledger and flush it to disk"""
    line = serialize(record)
    with file_lock:
        if not ends_with_newline(ledger_path):
            line = "\n" + line
        with open(ledger_path, "a", newline="", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()
            os.fsync(fh.fileno())
    if stats is not None:
        stats.appends += 1
    log.debug(f"Appended {record.company_id} to {ledger_path}")
    return 1
