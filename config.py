import os
import pytz
from dotenv import load_dotenv

load_dotenv()

PORT = int(os.environ.get("PORT", "8080"))
LOCAL_TIMEZONE = pytz.timezone(os.environ.get("LOCAL_TIMEZONE", "America/Chicago"))

COUNTER_BACKEND = os.environ.get("COUNTER_BACKEND", "sqlite")  # sqlite | redis | memory
SQLITE_DB_PATH = os.environ.get("SQLITE_DB_PATH", "/data/counters.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")
REDIS_COUNTERS_KEY = "counters"

LOGS_DIR = os.environ.get("LOGS_DIR", "/logs")
LOGGER_NAME = "nossl_app"
SESSION_SECRET = os.environ.get("SESSION_SECRET", "nossl-check-dev-secret")

REDIRECT_PARENT_DOMAIN = os.environ.get("REDIRECT_PARENT_DOMAIN", "nossl.sh")
REDIRECT_PATH = "/check"

ROUTE_ROOT, ROUTE_CHECK, ROUTE_API, ROUTE_HEALTHZ, ROUTE_OTHER = "root", "check", "api", "healthz", "other"
API_PREFIX = "/api"

COUNTER_NAMES = ("httpCount", "httpsCount", "apiCount", "checkCount", "healthzCount", "curlCount", "rootCount")

SUBDOMAIN_WORDS = ( "alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel", "india", "juliet", "kilo", "lima", "mike",
                    "november", "oscar", "papa", "quebec", "romeo", "sierra", "tango", "uniform", "victor", "whiskey", "xray", "yankee", "zulu")

# checked in order, first non-empty value wins
GEO_HEADERS = ( "cf-ipcountry", "cloudfront-viewer-country", "x-vercel-ip-country", "fly-client-country",
                "x-appengine-country", "x-country-code", "x-geo-country")

UNKNOWN_COUNTRY = "Unknown"
UNRESOLVED = "unresolved"

NO_CACHE_HEADERS = { "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0, private",
                     "Pragma": "no-cache", "Expires": "0"}


def validate():
    """Fail fast if the closed counter/word lists were edited into an invalid shape"""
    if len(COUNTER_NAMES) != 7 or len(set(COUNTER_NAMES)) != len(COUNTER_NAMES):
        raise RuntimeError(f"COUNTER_NAMES must hold 7 distinct names, got {COUNTER_NAMES!r}")
    if len(SUBDOMAIN_WORDS) != 26 or len(set(SUBDOMAIN_WORDS)) != len(SUBDOMAIN_WORDS):
        raise RuntimeError(f"SUBDOMAIN_WORDS must hold 26 distinct words, got {len(SUBDOMAIN_WORDS)}")
    if any(w != w.lower() or not w.isalpha() for w in SUBDOMAIN_WORDS):
        raise RuntimeError("SUBDOMAIN_WORDS must be lower-case alphabetic DNS labels")
    if COUNTER_BACKEND not in ("sqlite", "redis", "memory"):
        raise RuntimeError(f"Unknown COUNTER_BACKEND {COUNTER_BACKEND!r}")
