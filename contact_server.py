#!/usr/bin/env python3
#contact_server.py
#HTTP front end for the contact ledger.
#
# GET  /api/ping                 liveness check
# GET  /api/contact/<companyId>  has this company been contacted?
# POST /api/contact              register a contact {companyId, companyName, contactorName}
# GET  /stats                    cache and ledger statistics

import argparse
import http.server
import json
import logging
import re
import socketserver
import sys
import threading
import time
import urllib.parse

import config
import contact_ledger
import ledger_io

log = logging.getLogger(__name__)

MAX_BODY_BYTES = 64 * 1024


def status_response(status, message=None):
    resp = {"isContacted": status.is_contacted}
    if status.is_contacted:
        resp["contactorName"] = status.contactor_name
    if message:
        resp = {"message": message, **resp}
    return resp


class contact_api(http.server.BaseHTTPRequestHandler):
    server_version = "ContactLedger/1.0"

    def send_json(self, code, payload):
        body = json.dumps(payload).encode()
        self.send_response(code)
        self.send_header('Content-type', 'application/json')
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def not_found(self):
        self.send_json(404, {"error": "Route not found", "message": "The requested route does not exist in this API"})

    def server_error(self, what):
        log.exception(f"Unexpected error while {what} for {self.command} {self.path}")
        self.send_json(500, {"error": f"Internal server error while {what}"})

    def read_json_body(self):
        try:
            length = int(self.headers.get('Content-Length') or 0)
        except ValueError:
            raise contact_ledger.ValidationError("Invalid Content-Length")
        if length < 0:
            raise contact_ledger.ValidationError("Invalid Content-Length")
        if length > MAX_BODY_BYTES:
            raise contact_ledger.ValidationError("Request body too large")
        raw = self.rfile.read(length) if length else b""
        try:
            body = json.loads(raw.decode() or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise contact_ledger.ValidationError("Request body is not valid JSON")
        if not isinstance(body, dict):
            raise contact_ledger.ValidationError("Request body must be a JSON object")
        return body

    def do_GET(self):
        (ignore, ignore, urlpath, urlparams, ignore) = urllib.parse.urlsplit(self.path)
        try:
            if urlpath == "/api/ping":
                self.send_json(200, {"message": "API working", "timestamp": ledger_io.utc_timestamp()})
            elif urlpath == "/stats":
                ledger = self.server.ledger
                self.send_json(200, {"cache": ledger.cache_info()._asdict(), "ledger": vars(ledger.stats)})
            elif re.match(r"^/api/contact/[^/]+$", urlpath):
                company_id = urllib.parse.unquote(urlpath.rsplit("/", 1)[1])
                status = self.server.ledger.lookup(company_id)
                self.send_json(200, status_response(status))
            else:
                self.not_found()
        except Exception:
            self.server_error("checking contact")

    def do_POST(self):
        (ignore, ignore, urlpath, urlparams, ignore) = urllib.parse.urlsplit(self.path)
        if urlpath != "/api/contact":
            self.not_found()
            return
        try:
            body = self.read_json_body()
            log.debug(f"Data received on POST /api/contact: {body}")
            contactor = body.get("contactorName", body.get("gpgName"))
            status = self.server.ledger.register(body.get("companyId"), body.get("companyName"), contactor)
        except contact_ledger.ValidationError as e:
            self.send_json(400, {"error": str(e)})
            return
        except Exception:
            self.server_error("saving contact")
            return
        if status.created:
            self.send_json(201, status_response(status, "Contact registered successfully"))
        else:
            self.send_json(200, status_response(status, "The company was already contacted."))

    def do_PUT(self):
        self.not_found()

    def do_DELETE(self):
        self.not_found()

    def log_message(self, format, *args):
        headers = getattr(self, 'headers', None)
        origin = headers.get('Origin', 'No origin') if headers else 'No origin'
        log.debug(f"{self.address_string()} - Origin: {origin} - {format % args}")


class ThreadedContactServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    daemon_threads = True

    def __init__(self, server_address, handler, ledger):
        self.ledger = ledger
        http.server.HTTPServer.__init__(self, server_address, handler)


class LedgerRefresher:
    """Forces a ledger reload every interval_minutes until cancel() is called"""

    def __init__(self, ledger, interval_minutes):
        self.ledger = ledger
        self.interval = interval_minutes * 60
        self.ready_to_exit = threading.Event()
        self.timer = None

    def refresh(self):
        log.debug("Scheduled ledger refresh")
        try:
            self.ledger.reload(force=True)
        except Exception:
            log.exception("Scheduled ledger refresh failed")
        self.schedule()

    def schedule(self):
        if self.ready_to_exit.is_set():
            return None
        self.timer = threading.Timer(self.interval, self.refresh)
        self.timer.daemon = True
        self.timer.start()
        return self.timer

    def start(self):
        return self.schedule()

    def cancel(self):
        self.ready_to_exit.set()
        if self.timer:
            self.timer.cancel()


def configure_logging(settings):
    logfile = logging.FileHandler(settings['log_file'])
    logformat = logging.Formatter('%(asctime)s : %(levelname)s : %(name)s : %(message)s')
    logfile.setFormatter(logformat)
    root = logging.getLogger()
    if settings['log_detail'] == 0:
        root.setLevel(level=logging.CRITICAL)
    elif settings['log_detail'] == 1:
        root.addHandler(logfile)
        root.setLevel(logging.INFO)
    else:
        root.addHandler(logfile)
        root.setLevel(logging.DEBUG)


def build_server(settings, ledger=None):
    """Create the ledger (unless one is given) and the server bound to it. Does not start serving."""
    if ledger is None:
        ledger = contact_ledger.ContactLedger(settings.ledger_path, settings['cache_ttl_seconds'])
    ledger.initialize()
    if settings.is_ephemeral():
        log.warning(f"Ledger directory {settings['storage_dir']} is temporary storage. Contacts will be lost on restart.")
    server = ThreadedContactServer((settings['local_address'], int(settings['local_port'])), contact_api, ledger)
    return server


def main(argv=None):
    parser = argparse.ArgumentParser(description="Contact ledger HTTP service")
    parser.add_argument('-c', '--config', default="contact_ledger.yaml", help='Path to the yaml configuration file')
    args = parser.parse_args(argv)

    settings = config.config(args.config)
    configure_logging(settings)
    try:
        server = build_server(settings)
    except contact_ledger.StorageError as e:
        print(f"Contact ledger will not start. {e}")
        log.critical(f"Contact ledger will not start. {e}")
        return 1

    refresher = None
    if settings['refresh_minutes']:
        refresher = LedgerRefresher(server.ledger, settings['refresh_minutes'])
        refresher.start()

    server_thread = threading.Thread(target=server.serve_forever)
    server_thread.daemon = True
    print('Server is Ready. http://%s:%s/api/contact/<companyId>' % server.server_address[:2])
    try:
        server_thread.start()
        while True: time.sleep(100)
    except (KeyboardInterrupt, SystemExit):
        server.shutdown()
        server.server_close()

    print("Control-C hit: Exiting server.  Please wait..")
    if refresher:
        refresher.cancel()
    print("Bye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
