import json
import logging
import os

from typing import Any, Dict, Optional

import xdg.BaseDirectory


_LOGGER = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"


class InvalidSettings(ValueError):
    pass


def folder() -> str:
    return os.path.join(
        xdg.BaseDirectory.xdg_config_home,
        "barscripts",
    )


def _positive_number(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidSettings("%s must be a number, not %r" % (key, value))
    if value <= 0:
        raise InvalidSettings("%s must be greater than zero" % key)
    return float(value)


def _positive_integer(key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSettings("%s must be an integer, not %r" % (key, value))
    if value <= 0:
        raise InvalidSettings("%s must be greater than zero" % key)
    return value


def _prefix(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidSettings("%s must be a non-empty string" % key)
    return value


class Settings(object):
    """
    Runtime settings.  poll_interval is in seconds, call_timeout in
    milliseconds (it is handed to D-Bus as is).
    """

    DEFAULTS: Dict[str, Any] = {
        "poll_interval": 1.0,
        "call_timeout": 3000,
        "name_prefix": "org.mpris.MediaPlayer2.",
        "max_workers": 8,
    }
    VALIDATORS = {
        "poll_interval": _positive_number,
        "call_timeout": _positive_integer,
        "name_prefix": _prefix,
        "max_workers": _positive_integer,
    }

    def __init__(self, **overrides: Any) -> None:
        values = dict(self.DEFAULTS)
        for key, value in overrides.items():
            if key not in self.VALIDATORS:
                raise InvalidSettings("unknown setting %s" % key)
            values[key] = value
        for key, value in values.items():
            values[key] = self.VALIDATORS[key](key, value)
        self.poll_interval: float = values["poll_interval"]
        self.call_timeout: int = values["call_timeout"]
        self.name_prefix: str = values["name_prefix"]
        self.max_workers: int = values["max_workers"]

    def __repr__(self) -> str:
        return "<Settings %r>" % self.as_dict()

    def as_dict(self) -> Dict[str, Any]:
        return dict((key, getattr(self, key)) for key in self.DEFAULTS)

    def replace(self, **overrides: Any) -> "Settings":
        values = self.as_dict()
        values.update(
            (key, value) for key, value in overrides.items() if value is not None
        )
        return Settings(**values)


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from the JSON file at path (by default settings.json in
    the configuration folder).  A missing file means defaults.
    """
    if path is None:
        path = os.path.join(folder(), SETTINGS_FILE)
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        _LOGGER.debug("No settings file at %s, using defaults", path)
        return Settings()
    except json.JSONDecodeError as e:
        raise InvalidSettings("%s is not valid JSON: %s" % (path, e)) from e
    if not isinstance(data, dict):
        raise InvalidSettings("%s must contain a JSON object" % path)
    known = {}
    for key, value in data.items():
        if key in Settings.VALIDATORS:
            known[key] = value
        else:
            _LOGGER.warning("Ignoring unknown setting %s in %s", key, path)
    return Settings(**known)
