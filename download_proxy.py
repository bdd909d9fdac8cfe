import logging
from urllib.parse import unquote, urlparse

import requests
from flask import Response

import config
from identity import origin_of

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    def __init__(self, message, status=500):
        super().__init__(message)
        self.status = status

# ------------------------------
# Target validation
# ------------------------------
def restore_query(target, query_string):
    # A raw (unencoded) target loses its own query to the router; put it back
    parts = [p for p in (query_string or "").split("&") if p and not p.startswith("url=")]
    if not parts:
        return target
    sep = "&" if "?" in target else "?"
    return target + sep + "&".join(parts)

def resolve_target(path_segment=None, query_url=None, query_string=None):
    target = (path_segment or query_url or "").strip()
    # Double-encoded segments arrive still escaped
    if target and not target.lower().startswith(("http://", "https://")):
        target = unquote(target)
    if not target:
        raise DownloadError("Missing download URL", 400)
    if path_segment:
        target = restore_query(target, query_string)
    return target

def domain_of(url: str):
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""

def is_allowed_host(url: str, hosts=None):
    if hosts is None:
        hosts = config.ALLOWED_DOWNLOAD_HOSTS
    if urlparse(url).scheme not in ("http", "https"):
        return False
    host = domain_of(url)
    return bool(host) and any(host == h or host.endswith("." + h) for h in hosts)

def check_target(url: str, enforce=None, hosts=None):
    if enforce is None:
        enforce = config.ENFORCE_DOWNLOAD_ALLOWLIST
    if enforce and not is_allowed_host(url, hosts):
        logger.warning(f"Rejected download target {domain_of(url) or url[:80]}")
        raise DownloadError("Download host is not allowed", 403)
    return url

# ------------------------------
# Upstream stream
# ------------------------------
def upstream_headers(range_header=None):
    headers = {
        "User-Agent": config.DOWNLOAD_USER_AGENT,
        "Referer": config.DOWNLOAD_REFERER,
        "Origin": origin_of(config.DOWNLOAD_REFERER),
        "Accept": "*/*",
        # Byte offsets must refer to the raw file
        "Accept-Encoding": "identity",
    }
    if range_header:
        headers["Range"] = range_header
    return headers

def open_stream(url, range_header=None):
    logger.info(f"Proxying download: {url[:120]}")
    if range_header:
        logger.info(f"Forwarding range request: {range_header}")
    try:
        resp = requests.get(
            url,
            headers=upstream_headers(range_header),
            stream=True,
            timeout=config.DOWNLOAD_TIMEOUT,
        )
    except requests.exceptions.RequestException as e:
        raise DownloadError(f"Failed to proxy download: {e}", 500)

    if not 200 <= resp.status_code < 300:
        resp.close()
        raise DownloadError(f"Failed to proxy download: upstream returned HTTP {resp.status_code}", 500)
    return resp

def response_headers(upstream):
    headers = {
        "Content-Type": upstream.headers.get("Content-Type") or config.DEFAULT_VIDEO_TYPE,
        "Accept-Ranges": "bytes",
        "Cache-Control": "public, max-age=3600",
    }
    if upstream.status_code == 206 and upstream.headers.get("Content-Range"):
        headers["Content-Range"] = upstream.headers["Content-Range"]
        logger.info(f"Serving partial content: {headers['Content-Range']}")
    if upstream.headers.get("Content-Length"):
        headers["Content-Length"] = upstream.headers["Content-Length"]
        if upstream.status_code == 200:
            logger.info(f"Serving full content, length: {headers['Content-Length']}")
    return headers

def stream_response(upstream):
    """Wrap an open upstream response in a streaming Flask response.

    The upstream connection is closed when the body is exhausted, when
    reading from it fails, and when the client goes away (the WSGI server
    closes the iterator, which raises GeneratorExit inside it).
    """
    def generate():
        sent = 0
        try:
            for chunk in upstream.iter_content(chunk_size=config.CHUNK_SIZE):
                if chunk:
                    sent += len(chunk)
                    yield chunk
        except GeneratorExit:
            logger.info(f"Client disconnected after {sent} bytes")
            raise
        except requests.exceptions.RequestException as e:
            logger.error(f"Stream error after {sent} bytes: {e}")
            raise
        finally:
            upstream.close()

    response = Response(generate(), status=upstream.status_code, headers=response_headers(upstream))
    # Covers a client that leaves before the first chunk is pulled
    response.call_on_close(upstream.close)
    return response

def proxy_download(path_segment=None, query_url=None, range_header=None, query_string=None):
    url = check_target(resolve_target(path_segment, query_url, query_string))
    return stream_response(open_stream(url, range_header))
