import logging
import os
import threading
from typing import NamedTuple

import geoip2.database
import geoip2.errors

from .config import UNKNOWN

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Geo lookup
# -----------------------------------------------------------------------------
class GeoLocator:
    """
    City/country lookup against a local MaxMind City database.
    Missing database or unresolvable address -> None, never an exception.
    """

    def __init__(self, db_path: str | None):
        self.db_path = db_path
        self._reader = None
        self._opened = False
        self._lock = threading.Lock()

    def get_reader(self):
        if self._opened:
            return self._reader
        with self._lock:
            if not self._opened:
                if self.db_path and os.path.exists(self.db_path):
                    try:
                        self._reader = geoip2.database.Reader(self.db_path)
                    except (OSError, ValueError, RuntimeError) as exc:
                        logger.warning("could not open geoip database %s: %s", self.db_path, exc)
                else:
                    logger.info("no geoip database at %s, locations will be Unknown", self.db_path)
                # set last: readers skip the lock once this is True
                self._opened = True
        return self._reader

    def lookup(self, raw_ip: str) -> dict | None:
        reader = self.get_reader()
        if reader is None or not raw_ip:
            return None
        try:
            resp = reader.city(raw_ip)
        except (geoip2.errors.GeoIP2Error, ValueError):
            return None
        country = resp.country.iso_code or resp.registered_country.iso_code
        return {"city": resp.city.name, "country": country}

    def close(self):
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def format_location(geo: dict | None) -> str:
    if not geo or not geo.get("country"):
        return UNKNOWN
    if geo.get("city"):
        return f"{geo['city']}, {geo['country']}"
    return geo["country"]


# -----------------------------------------------------------------------------
# User agent
# -----------------------------------------------------------------------------
class UserAgentInfo(NamedTuple):
    browser: str
    os: str
    device: str

    def to_agent_string(self) -> str:
        return f"{self.browser} / {self.os}"


def parse_user_agent(ua: str | None) -> UserAgentInfo:
    """
    Rough browser + OS + device classification (coarse on purpose).
    A missing header yields Unknown for every field.
    """
    if not ua or not ua.strip():
        return UserAgentInfo(UNKNOWN, UNKNOWN, UNKNOWN)

    ua_lower = ua.lower()

    # browser
    if "firefox" in ua_lower and "seamonkey" not in ua_lower:
        browser = "Firefox"
    elif "opr/" in ua_lower or "opera" in ua_lower:
        browser = "Opera"
    elif "chrome" in ua_lower and "chromium" not in ua_lower and "edg" not in ua_lower:
        browser = "Chrome"
    elif "safari" in ua_lower and "chrome" not in ua_lower:
        browser = "Safari"
    elif "edg" in ua_lower:
        browser = "Edge"
    elif "chromium" in ua_lower:
        browser = "Chromium"
    else:
        browser = "Other"

    # OS
    if "windows" in ua_lower:
        os_name = "Windows"
    elif "iphone" in ua_lower or "ipad" in ua_lower:
        os_name = "iOS"
    elif "mac os x" in ua_lower or "macintosh" in ua_lower:
        os_name = "macOS"
    elif "android" in ua_lower:
        os_name = "Android"
    elif "linux" in ua_lower:
        os_name = "Linux"
    else:
        os_name = "Other"

    # device
    if any(s in ua_lower for s in ("bot", "spider", "crawl")):
        device = "Bot"
    elif "ipad" in ua_lower or "tablet" in ua_lower:
        device = "Tablet"
    elif "mobi" in ua_lower or "iphone" in ua_lower or "android" in ua_lower:
        device = "Mobile"
    else:
        device = "Desktop"

    return UserAgentInfo(browser, os_name, device)


# -----------------------------------------------------------------------------
# Request helpers
# -----------------------------------------------------------------------------
def client_ip(req) -> str:
    """
    First X-Forwarded-For hop, else the socket peer, else "unknown".
    """
    forwarded = (req.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return forwarded or req.remote_addr or "unknown"
