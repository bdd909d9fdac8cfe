import os

# ------------------------------
# Helpers
# ------------------------------
def env_list(name: str, default=None):
    raw = os.environ.get(name, "")
    items = [x.strip() for x in raw.split(",") if x.strip()]
    return items or list(default or [])

def env_flag(name: str, default: bool):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")

# ------------------------------
# Server
# ------------------------------
PORT = int(os.environ.get("PORT", 5000))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ------------------------------
# Upstream API & mirrors
# ------------------------------
KNOWN_MIRRORS = [
    "h5.aoneroom.com",
    "movieboxapp.in",
    "moviebox.pk",
    "moviebox.ph",
    "moviebox.id",
    "v.moviebox.ph",
    "netnaija.video",
]

SELECTED_HOST = os.environ.get("MOVIEBOX_API_HOST", "h5.aoneroom.com")

# Selected host is tried first; order of the rest is kept.
MIRROR_HOSTS = list(dict.fromkeys(
    [SELECTED_HOST] + env_list("MOVIEBOX_MIRRORS", KNOWN_MIRRORS)
))

API_PREFIX = "/wefeed-h5-bff"
BOOTSTRAP_PATH = f"{API_PREFIX}/app/get-latest-app-pkgs"
BOOTSTRAP_SEED_ROOT = env_flag("MOVIEBOX_SEED_ROOT", False)

REQ_TIMEOUT = float(os.environ.get("MOVIEBOX_TIMEOUT", 30))

# Anonymous viewer id the web client sends with trending requests
TRENDING_UID = "5591179548772780352"

SUBJECT_ALL = 0
SUBJECT_MOVIES = 1
SUBJECT_TV_SERIES = 2
SUBJECT_MUSIC = 6

# ------------------------------
# Request identity
# ------------------------------
IDENTITY_PROFILE = os.environ.get("MOVIEBOX_IDENTITY", "mobile").lower()
SPOOF_IP = os.environ.get("MOVIEBOX_SPOOF_IP", "1.1.1.1")
CLIENT_TIMEZONE = "Africa/Nairobi"

# ------------------------------
# Download proxy
# ------------------------------
DEFAULT_DOWNLOAD_HOSTS = [
    "bcdnw.hakunaymatata.com",
    "valiw.hakunaymatata.com",
]
ALLOWED_DOWNLOAD_HOSTS = set(DEFAULT_DOWNLOAD_HOSTS + env_list("DOWNLOAD_ALLOWED_HOSTS"))
ENFORCE_DOWNLOAD_ALLOWLIST = env_flag("DOWNLOAD_ENFORCE_ALLOWLIST", True)

DOWNLOAD_TIMEOUT = float(os.environ.get("DOWNLOAD_TIMEOUT", 30))
DOWNLOAD_USER_AGENT = "okhttp/4.12.0"
DOWNLOAD_REFERER = "https://fmoviesunblocked.net/"
PLAYER_PAGE = "https://fmoviesunblocked.net/spa/videoPlayPage/movies"

CHUNK_SIZE = 64 * 1024
DEFAULT_VIDEO_TYPE = "video/mp4"
