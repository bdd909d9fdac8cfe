import logging
import threading

import requests
from bs4 import BeautifulSoup

import config
from identity import default_identity

logger = logging.getLogger(__name__)

# Phrases found on ISP / government block pages served in place of the API
BLOCK_PAGE_MARKERS = (
    "internet positif",
    "internetpositif",
    "trustpositif",
    "site blocked",
    "website blocked",
    "access to this site has been blocked",
    "blocked as per",
    "this website is not available in your country",
    "the site you are trying to access is blocked",
)


class UpstreamError(Exception):
    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class ServiceUnavailable(UpstreamError):
    pass

# ------------------------------
# Response helpers
# ------------------------------
def unwrap(payload):
    """Strip the ``{"data": {...}}`` envelope the API wraps everything in."""
    if isinstance(payload, dict) and payload.get("data") is not None:
        return payload["data"]
    return payload

def is_block_page(text: str):
    if not text:
        return False
    stripped = text.lstrip()
    if stripped.startswith("{") or stripped.startswith("["):
        return False
    soup = BeautifulSoup(text, "html.parser")
    title = soup.title.get_text(" ", strip=True) if soup.title else ""
    haystack = f"{title} {soup.get_text(' ', strip=True)[:5000]}".lower()
    return any(marker in haystack for marker in BLOCK_PAGE_MARKERS)

def normalize_base(host: str):
    host = host.strip().rstrip("/")
    if not host.startswith(("http://", "https://")):
        host = "https://" + host
    return host

# ------------------------------
# Mirror selection
# ------------------------------
class MirrorSelector:
    def __init__(self, hosts):
        self.mirrors = [normalize_base(h) for h in hosts if h and h.strip()]
        if not self.mirrors:
            raise ValueError("At least one mirror host is required")
        self.index = 0
        self._lock = threading.Lock()

    def __len__(self):
        return len(self.mirrors)

    @property
    def current(self):
        return self.mirrors[self.index]

    def advance(self):
        with self._lock:
            self.index = (self.index + 1) % len(self.mirrors)
            return self.mirrors[self.index]

# ------------------------------
# Session bootstrap
# ------------------------------
class SessionManager:
    """Owns the cookie jar and the warm-up call that fills it.

    Two states: uninitialized and initialized. ``ensure`` moves to
    initialized after a successful warm-up against the given mirror;
    ``reset`` drops the cookies and goes back. A failed warm-up is logged
    and left for the real request to deal with.
    """

    def __init__(self, session_factory=requests.Session, timeout=config.REQ_TIMEOUT,
                 seed_root=config.BOOTSTRAP_SEED_ROOT):
        self.session = session_factory()
        self.timeout = timeout
        self.seed_root = seed_root
        self.initialized = False
        self.host = None
        self.app_info = None
        self._lock = threading.Lock()

    def ensure(self, base_url, headers):
        if self.initialized and self.host == base_url:
            return True
        with self._lock:
            if self.initialized and self.host == base_url:
                return True
            self.initialized = False
            logger.info(f"Initializing session cookies against {base_url}")
            try:
                if self.seed_root:
                    self.session.get(base_url + "/", headers=headers, timeout=self.timeout)
                r = self.session.get(
                    base_url + config.BOOTSTRAP_PATH,
                    params={"app_name": "moviebox"},
                    headers=headers,
                    timeout=self.timeout,
                )
                r.raise_for_status()
                self.app_info = unwrap(r.json())
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Session bootstrap failed on {base_url}: {e}")
                return False
            self.initialized = True
            self.host = base_url
            cookies = sorted(c.name for c in self.session.cookies)
            logger.info(f"Session cookies initialized ({', '.join(cookies) or 'none received'})")
            return True

    def reset(self):
        with self._lock:
            logger.info("Resetting upstream session")
            self.session.cookies.clear()
            self.initialized = False
            self.host = None

# ------------------------------
# Upstream client
# ------------------------------
class UpstreamClient:
    def __init__(self, identity=None, mirrors=None, session=None, timeout=config.REQ_TIMEOUT):
        self.identity = identity or default_identity()
        self.mirrors = mirrors or MirrorSelector(config.MIRROR_HOSTS)
        self.session = session or SessionManager(timeout=timeout)
        self.timeout = timeout

    def _headers(self, base, overrides):
        headers = self.identity.headers(referer=base + "/")
        headers.update(overrides or {})
        return headers

    def _send(self, base, path, method, params, json, headers):
        return self.session.session.request(
            method,
            base + path,
            params=params,
            json=json,
            headers=self._headers(base, headers),
            timeout=self.timeout,
        )

    def _rotate(self, base, reason):
        nxt = self.mirrors.advance()
        logger.warning(f"Mirror {base} failed ({reason}); switching to {nxt}")

    def fetch(self, path, method="GET", params=None, json=None, headers=None):
        """Call the API on the current mirror, failing over to the next ones.

        403 gets one cookie refresh per call before the mirror is given up.
        403, 5xx, network errors and block pages rotate to the next mirror;
        any other 4xx is raised straight away. Returns the unwrapped body.
        """
        attempts = 0
        refreshed = False
        while attempts < len(self.mirrors):
            base = self.mirrors.current
            self.session.ensure(base, self._headers(base, None))
            try:
                r = self._send(base, path, method, params, json, headers)
                if r.status_code == 403 and not refreshed:
                    refreshed = True
                    logger.info(f"403 from {base}{path}; refreshing session and retrying")
                    self.session.reset()
                    self.session.ensure(base, self._headers(base, None))
                    r = self._send(base, path, method, params, json, headers)
            except requests.exceptions.RequestException as e:
                self._rotate(base, e.__class__.__name__)
                attempts += 1
                continue

            if r.status_code == 403 or r.status_code >= 500:
                self._rotate(base, f"HTTP {r.status_code}")
                attempts += 1
                continue
            if r.status_code >= 400:
                raise UpstreamError(f"Upstream returned HTTP {r.status_code} for {path}", r.status_code)
            if is_block_page(r.text):
                self._rotate(base, "block page")
                attempts += 1
                continue
            try:
                return unwrap(r.json())
            except ValueError:
                raise UpstreamError(f"Upstream returned a non-JSON body for {path}", r.status_code)

        raise ServiceUnavailable(f"Service unavailable: all {len(self.mirrors)} mirrors failed", 503)
