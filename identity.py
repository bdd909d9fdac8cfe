import json
import random
from urllib.parse import urlparse

import config

# ------------------------------
# Client profiles
# ------------------------------
PROFILES = {
    # Android app traffic
    "mobile": {
        "User-Agent": "okhttp/4.12.0",
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.5",
        "X-Client-Info": json.dumps({"timezone": config.CLIENT_TIMEZONE}, separators=(",", ":")),
    },
    "browser": {
        "User-Agent": ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                       "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"),
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.9",
    },
    "none": {
        "User-Agent": "Mozilla/5.0 (compatible; MovieBoxGateway/1.0)",
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.5",
    },
}

IP_HEADERS = ("X-Forwarded-For", "X-Real-IP", "CF-Connecting-IP", "Client-IP")

def random_ipv4():
    return ".".join(
        [str(random.randint(1, 254))] + [str(random.randint(0, 255)) for _ in range(3)]
    )

def origin_of(url: str):
    parsed = urlparse(url or "")
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


class RequestIdentity:
    """Builds the headers an outbound request presents to the upstream.

    ``profile`` picks the client being imitated ("mobile", "browser" or
    "none"). ``spoof_ip`` is a fixed address, "random" for a fresh address
    on every call, or empty to send no forwarding headers. The "none"
    profile never sends forwarding headers.
    """

    def __init__(self, profile="mobile", spoof_ip="1.1.1.1"):
        if profile not in PROFILES:
            raise ValueError(f"Unknown identity profile: {profile}")
        self.profile = profile
        self.spoof_ip = spoof_ip

    def client_ip(self):
        if self.profile == "none" or not self.spoof_ip:
            return None
        if self.spoof_ip == "random":
            return random_ipv4()
        return self.spoof_ip

    def headers(self, referer=None):
        headers = dict(PROFILES[self.profile])
        ip = self.client_ip()
        if ip:
            for name in IP_HEADERS:
                headers[name] = ip
        if referer:
            headers["Referer"] = referer
            origin = origin_of(referer)
            if origin:
                headers["Origin"] = origin
        return headers


def default_identity():
    return RequestIdentity(config.IDENTITY_PROFILE, config.SPOOF_IP)
