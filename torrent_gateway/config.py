import os
import tempfile
import dotenv


dotenv.load_dotenv()


# Defaults
DEBUG = True
VERBOSE = False
LOG_PATH = "torrent_gateway.log"
LOG_LEVEL = "DEBUG" if DEBUG else "INFO"
LOG_ROTATION = "1 week"
LOG_RETENTION = "1 month"

HOME = os.getenv("HOME", tempfile.gettempdir())
SQLITE_DB_PATH = os.path.join(HOME, ".torrent_gateway.db")

# Backend daemon (one per deployment)
CLIENT_TYPE = "rtorrent"
CLIENT_HOST = "localhost"
CLIENT_PORT = 9080
CLIENT_USERNAME = ""
CLIENT_PASSWORD = ""
CLIENT_RPC_PATH = ""
CLIENT_USE_SSL = False
CLIENT_TIMEOUT = 10                    # Seconds before a daemon call is abandoned

# Filesystem boundary
ALLOWED_PATHS = ""                     # os.pathsep separated, empty allows everything
TEMP_PATH = os.path.join(tempfile.gettempdir(), "torrent-gateway")

# Catalog refresh intervals (in seconds)
POLL_IDLE_INTERVAL = 60                # Refresh every 60s when idle
POLL_ACTIVE_INTERVAL = 5               # Refresh every 5s when downloads active

# Media inspection helper
MEDIAINFO_PATH = "mediainfo"
MEDIAINFO_TIMEOUT = 10
MEDIAINFO_MAX_OUTPUT = 2 * 1024 * 1000


def _split_paths(value):
    return [p for p in value.split(os.pathsep) if p.strip()]


class Config:
    DEBUG = os.getenv("DEBUG", DEBUG)
    VERBOSE = os.getenv("VERBOSE", str(VERBOSE)).lower() == "true"

    LOG_PATH = os.getenv("LOG_PATH", LOG_PATH)
    LOG_LEVEL = os.getenv("LOG_LEVEL", LOG_LEVEL)
    LOG_ROTATION = os.getenv("LOG_ROTATION", LOG_ROTATION)
    LOG_RETENTION = os.getenv("LOG_RETENTION", LOG_RETENTION)

    SQLITE_DB_PATH = os.getenv("SQLITE_DB_PATH", SQLITE_DB_PATH)

    # Backend daemon configuration
    CLIENT_TYPE = os.getenv("CLIENT_TYPE", CLIENT_TYPE).lower()
    CLIENT_HOST = os.getenv("CLIENT_HOST", CLIENT_HOST)
    CLIENT_PORT = int(os.getenv("CLIENT_PORT", CLIENT_PORT))
    CLIENT_USERNAME = os.getenv("CLIENT_USERNAME", CLIENT_USERNAME)
    CLIENT_PASSWORD = os.getenv("CLIENT_PASSWORD", CLIENT_PASSWORD)
    CLIENT_RPC_PATH = os.getenv("CLIENT_RPC_PATH", CLIENT_RPC_PATH)
    CLIENT_USE_SSL = os.getenv("CLIENT_USE_SSL", str(CLIENT_USE_SSL)).lower() == "true"
    CLIENT_TIMEOUT = float(os.getenv("CLIENT_TIMEOUT", CLIENT_TIMEOUT))

    # Filesystem boundary
    ALLOWED_PATHS = _split_paths(os.getenv("ALLOWED_PATHS", ALLOWED_PATHS))
    TEMP_PATH = os.getenv("TEMP_PATH", TEMP_PATH)

    # Catalog refresh intervals
    POLL_IDLE_INTERVAL = int(os.getenv("POLL_IDLE_INTERVAL", POLL_IDLE_INTERVAL))
    POLL_ACTIVE_INTERVAL = int(os.getenv("POLL_ACTIVE_INTERVAL", POLL_ACTIVE_INTERVAL))

    # Media inspection helper
    MEDIAINFO_PATH = os.getenv("MEDIAINFO_PATH", MEDIAINFO_PATH)
    MEDIAINFO_TIMEOUT = float(os.getenv("MEDIAINFO_TIMEOUT", MEDIAINFO_TIMEOUT))
    MEDIAINFO_MAX_OUTPUT = int(os.getenv("MEDIAINFO_MAX_OUTPUT", MEDIAINFO_MAX_OUTPUT))

    # Server Configuration
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8144"))
