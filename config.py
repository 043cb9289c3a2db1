import os
import pathlib
import tempfile
import yaml

DEFAULTS = {
    "local_address": "0.0.0.0",
    "local_port": 5000,
    "storage_dir": ".",
    "ledger_file": "contacts.csv",
    "cache_ttl_seconds": 60,
    "refresh_minutes": 10,
    "log_detail": 1,
    "log_file": "contact_ledger.log",
}

#environment variable -> (config key, converter)
ENVIRONMENT = {
    "PORT": ("local_port", int),
    "LEDGER_DIR": ("storage_dir", str),
    "LEDGER_CACHE_TTL": ("cache_ttl_seconds", float),
}


class config(dict):
    """Settings loaded from a yaml file on top of DEFAULTS. Environment variables win over both."""

    def __init__(self, filename=None, environ=None):
        super().__init__(DEFAULTS)
        self.filename = filename
        if filename and pathlib.Path(filename).exists():
            with open(filename) as fh:
                yaml_dict = yaml.safe_load(fh.read()) or {}
            if not isinstance(yaml_dict, dict):
                raise ValueError(f"{filename} must contain a mapping of settings")
            self.update(yaml_dict)
        self.apply_environment(os.environ if environ is None else environ)

    def apply_environment(self, environ):
        for var, (key, convert) in ENVIRONMENT.items():
            value = environ.get(var)
            if value:
                self[key] = convert(value)

    @property
    def ledger_path(self):
        return pathlib.Path(self['storage_dir']) / self['ledger_file']

    def is_ephemeral(self):
        """True when the ledger lives under the system temp directory and will not survive a restart"""
        tmp = pathlib.Path(tempfile.gettempdir()).resolve()
        storage = pathlib.Path(self['storage_dir']).resolve()
        return storage == tmp or tmp in storage.parents

    def save(self, filename=None):
        filename = filename or self.filename
        with open(filename, "w") as fh:
            fh.write(yaml.safe_dump(dict(self), default_flow_style=False))
