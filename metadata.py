import re
from urllib.parse import quote

import config
from identity import origin_of
from upstream import UpstreamError

HOME_PATH = f"{config.API_PREFIX}/web/home"
TRENDING_PATH = f"{config.API_PREFIX}/web/subject/trending"
SEARCH_PATH = f"{config.API_PREFIX}/web/subject/search"
DETAIL_PATH = f"{config.API_PREFIX}/web/subject/detail"
DOWNLOAD_PATH = f"{config.API_PREFIX}/web/subject/download"

# ------------------------------
# Enrichment
# ------------------------------
def attach_thumbnail(item):
    """Set ``thumbnail`` from ``cover.url``, falling back to ``stills.url``."""
    if not isinstance(item, dict):
        return item
    for key in ("cover", "stills"):
        image = item.get(key)
        if isinstance(image, dict) and image.get("url"):
            item["thumbnail"] = image["url"]
            break
    return item

def proxy_url_for(proxy_base: str, url: str):
    return f"{proxy_base.rstrip('/')}/api/download/{quote(url, safe='')}"

def player_referer(subject_id, detail_path):
    return f"{config.PLAYER_PAGE}/{detail_path}?id={subject_id}&type=/movie/detail"

def process_sources(content, proxy_base):
    downloads = content.get("downloads") if isinstance(content, dict) else None
    if not downloads:
        return content
    content["processedSources"] = [
        {
            "id": f.get("id"),
            "quality": f.get("resolution") or "Unknown",
            "directUrl": f.get("url"),
            "proxyUrl": proxy_url_for(proxy_base, f["url"]) if f.get("url") else None,
            "size": f.get("size"),
            "format": "mp4",
        }
        for f in downloads
    ]
    return content

def int_arg(value, default):
    # Leading integer only ("12abc" -> 12); invalid, missing and zero fall back.
    match = re.match(r"\s*[+-]?\d+", value or "")
    if not match:
        return default
    return int(match.group()) or default

# ------------------------------
# Upstream calls
# ------------------------------
def homepage(client):
    return client.fetch(HOME_PATH)

def trending(client, page=0, per_page=18):
    params = {"page": page, "perPage": per_page, "uid": config.TRENDING_UID}
    return client.fetch(TRENDING_PATH, params=params)

def search(client, keyword, page=1, per_page=24, subject_type=config.SUBJECT_ALL):
    payload = {
        "keyword": keyword,
        "page": page,
        "perPage": per_page,
        "subjectType": subject_type,
    }
    content = client.fetch(SEARCH_PATH, method="POST", json=payload)
    items = content.get("items") if isinstance(content, dict) else None
    if items is None:
        return content
    if subject_type != config.SUBJECT_ALL:
        items = [i for i in items if i.get("subjectType") == subject_type]
    content["items"] = [attach_thumbnail(i) for i in items]
    return content

def info(client, subject_id):
    content = client.fetch(DETAIL_PATH, params={"subjectId": subject_id})
    if isinstance(content, dict) and content.get("subject"):
        attach_thumbnail(content["subject"])
    return content

def sources(client, subject_id, season=0, episode=0, proxy_base=""):
    detail = client.fetch(DETAIL_PATH, params={"subjectId": subject_id})
    subject = detail.get("subject") if isinstance(detail, dict) else None
    detail_path = (subject or {}).get("detailPath")
    if not detail_path:
        raise UpstreamError("Could not get movie detail path for referer header")

    referer = player_referer(subject_id, detail_path)
    headers = {"Referer": referer, "Origin": origin_of(referer)}
    params = {"subjectId": subject_id, "se": season, "ep": episode}
    content = client.fetch(DOWNLOAD_PATH, params=params, headers=headers)
    return process_sources(content, proxy_base)
