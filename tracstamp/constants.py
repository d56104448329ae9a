"""
TracStamp Constants

All service constants defined here for single source of truth.
"""

from typing import Final, List, Tuple
from dataclasses import dataclass

# ==============================================================================
# SERVICE IDENTITY
# ==============================================================================

SERVICE_NAME: Final[str] = "TracStamp"
SERVICE_VERSION: Final[str] = "1.0.0"
SERVICE_DESCRIPTION: Final[str] = "P2P timestamping and certification service"

# Trac address of the issuing agent, recorded as stamped_by
DEFAULT_IDENTITY: Final[str] = (
    "trac1sxudal9exnwynd7wws5a0j8xtx9tu5fkjmuvqr9q4udskn6w96tqk8p8rp"
)

# ==============================================================================
# GATEWAY AND CHANNELS
# ==============================================================================

DEFAULT_GATEWAY_URL: Final[str] = "ws://127.0.0.1:49222"
MAIN_CHANNEL: Final[str] = "tracstamp"
ENTRY_CHANNEL: Final[str] = "0000intercom"

# Commands advertised in service_announce
SUPPORTED_COMMANDS: Final[Tuple[str, ...]] = (
    "stamp_request",
    "verify",
    "stats_request",
)

# ==============================================================================
# TIMERS
# ==============================================================================

ANNOUNCE_INTERVAL_SEC: Final[float] = 5 * 60     # Periodic presence announcement
INITIAL_ANNOUNCE_DELAY_SEC: Final[float] = 1.0   # Delay after joined
RECONNECT_DELAY_SEC: Final[float] = 5.0          # Fixed, no backoff

# ==============================================================================
# CERTIFICATES
# ==============================================================================

STAMP_ID_PREFIX: Final[str] = "TS-"
STAMP_ID_DIGITS: Final[int] = 5
CONTENT_PREVIEW_LENGTH: Final[int] = 100
CONTENT_PREVIEW_SUFFIX: Final[str] = "..."
DEFAULT_STAMPS_FILE: Final[str] = "stamps.json"

# ==============================================================================
# TIME SOURCES
# ==============================================================================

TIME_QUERY_TIMEOUT_SEC: Final[float] = 5.0
LOCAL_FALLBACK_SOURCE: Final[str] = "local_fallback"

PROVIDER_KIND_HTTP: Final[str] = "http"
PROVIDER_KIND_NTP: Final[str] = "ntp"


@dataclass(frozen=True)
class TimeProvider:
    """
    External UTC time provider.

    For HTTP providers ``endpoint`` is the URL and ``field`` the JSON key
    holding the ISO-8601 time. For NTP providers ``endpoint`` is the host.
    """
    name: str
    endpoint: str
    kind: str = PROVIDER_KIND_HTTP
    field: str = ""


# Priority order: the first provider in this list that answers is primary
TIME_PROVIDERS: Final[List[TimeProvider]] = [
    TimeProvider(
        "worldtimeapi.org",
        "http://worldtimeapi.org/api/timezone/Etc/UTC",
        PROVIDER_KIND_HTTP,
        "datetime",
    ),
    TimeProvider(
        "timeapi.io",
        "https://timeapi.io/api/time/current/zone?timeZone=UTC",
        PROVIDER_KIND_HTTP,
        "dateTime",
    ),
    TimeProvider(
        "time.nist.gov",
        "time.nist.gov",
        PROVIDER_KIND_NTP,
    ),
]
