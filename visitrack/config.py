import os

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
DB_PATH = os.environ.get("VISITRACK_DB", "visitrack.sqlite3")
DB_TIMEOUT = float(os.environ.get("VISITRACK_DB_TIMEOUT", "5.0"))
GEOIP_DB_PATH = os.environ.get("GEOIP_DB_PATH", "/geoip/GeoLite2-City.mmdb")

ACTIVE_MINUTES = int(os.environ.get("VISITRACK_ACTIVE_MINUTES", "5"))
DAU_DAYS = int(os.environ.get("VISITRACK_DAU_DAYS", "30"))
PAGE_LIMIT = int(os.environ.get("VISITRACK_PAGE_LIMIT", "10"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# CORS allowlist for tracked sites calling /api/visit from their own origin
CORS_ALLOW_ORIGINS = os.environ.get("CORS_ALLOW_ORIGINS", "").split(",")
CORS_ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS if o.strip()]

# literal project value that removes the project filter
ALL_PROJECTS = "All"
UNKNOWN = "Unknown"
