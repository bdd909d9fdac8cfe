import logging
import sys

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS

import config
import metadata
from download_proxy import DownloadError, proxy_download
from identity import default_identity
from upstream import MirrorSelector, SessionManager, UpstreamClient

# ------------------------------
# Logging
# ------------------------------
formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setFormatter(formatter)

root_logger = logging.getLogger()
if not root_logger.handlers:
    root_logger.addHandler(console_handler)
root_logger.setLevel(config.LOG_LEVEL)

logger = logging.getLogger(__name__)

# ------------------------------
# App & shared upstream state
# ------------------------------
app = Flask(__name__)
# Encoded download targets carry "https://" in the path
app.url_map.merge_slashes = False
CORS(
    app,
    resources={r"/*": {"origins": "*"}},
    send_wildcard=True,
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization", "Range"],
    expose_headers=["Content-Length", "Content-Range", "Content-Type", "Accept-Ranges"],
)

AVAILABLE_ENDPOINTS = [
    "GET /api/homepage",
    "GET /api/trending",
    "GET /api/search/:query",
    "GET /api/info/:movieId",
    "GET /api/sources/:movieId",
    "GET /api/download/:encodedUrl",
    "GET /api/download?url=",
]

def build_client():
    return UpstreamClient(
        identity=default_identity(),
        mirrors=MirrorSelector(config.MIRROR_HOSTS),
        session=SessionManager(timeout=config.REQ_TIMEOUT),
        timeout=config.REQ_TIMEOUT,
    )

app.extensions["moviebox"] = build_client()

def get_client():
    return current_app.extensions["moviebox"]

def success(data):
    return jsonify({"status": "success", "data": data})

def failure(message, error, status=500):
    return jsonify({"status": "error", "message": message, "error": str(error)}), status

# ------------------------------
# Middleware & error handlers
# ------------------------------
@app.before_request
def answer_preflight():
    # Every path answers OPTIONS, including unknown ones
    if request.method == "OPTIONS":
        return ("", 200)

@app.errorhandler(404)
def not_found(error):
    return jsonify({
        "status": "error",
        "message": "Endpoint not found",
        "availableEndpoints": AVAILABLE_ENDPOINTS,
    }), 404

@app.errorhandler(DownloadError)
def download_error(error):
    logger.error(f"Download proxy error: {error}")
    return jsonify({"status": "error", "message": str(error)}), error.status

@app.errorhandler(500)
def internal_error(error):
    original = getattr(error, "original_exception", None) or error
    logger.error(f"Unhandled error: {original}")
    return failure("Internal server error", original)

# ------------------------------
# API Endpoints
# ------------------------------
INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>MovieBox Gateway</title></head>
<body>
<h1>MovieBox Gateway</h1>
<p>Movies, TV series and download sources, re-served with CORS and range support.</p>
<ul>
<li><a href="/api/homepage">/api/homepage</a></li>
<li><a href="/api/trending">/api/trending</a></li>
<li><a href="/api/search/avatar">/api/search/:query</a></li>
<li><a href="/api/info/8906247916759695608">/api/info/:movieId</a></li>
<li><a href="/api/sources/9028867555875774472?season=1&amp;episode=1">/api/sources/:movieId?season=&amp;episode=</a></li>
<li><code>/api/download/[encoded-video-url]</code> (links come from the sources endpoint)</li>
</ul>
</body>
</html>"""

@app.route('/')
def index():
    return INDEX_HTML

@app.route('/favicon.ico')
def favicon():
    return ("", 204)

@app.route('/health')
def health():
    client = get_client()
    return jsonify({
        "status": "ok",
        "mirrors": len(client.mirrors),
        "currentMirror": client.mirrors.current,
        "sessionInitialized": client.session.initialized,
    })

@app.route('/api/homepage')
def api_homepage():
    try:
        return success(metadata.homepage(get_client()))
    except Exception as e:
        logger.error(f"Homepage error: {e}")
        return failure("Failed to fetch homepage content", e)

@app.route('/api/trending')
def api_trending():
    page = metadata.int_arg(request.args.get("page"), 0)
    per_page = metadata.int_arg(request.args.get("perPage"), 18)
    try:
        return success(metadata.trending(get_client(), page, per_page))
    except Exception as e:
        logger.error(f"Trending error: {e}")
        return failure("Failed to fetch trending content", e)

@app.route('/api/search/<path:query>')
def api_search(query):
    page = metadata.int_arg(request.args.get("page"), 1)
    per_page = metadata.int_arg(request.args.get("perPage"), 24)
    subject_type = metadata.int_arg(request.args.get("type"), config.SUBJECT_ALL)
    try:
        return success(metadata.search(get_client(), query, page, per_page, subject_type))
    except Exception as e:
        logger.error(f"Search error: {e}")
        return failure("Failed to search content", e)

@app.route('/api/info/<movie_id>')
def api_info(movie_id):
    try:
        return success(metadata.info(get_client(), movie_id))
    except Exception as e:
        logger.error(f"Info error: {e}")
        return failure("Failed to fetch movie/series info", e)

@app.route('/api/sources/<movie_id>')
def api_sources(movie_id):
    season = metadata.int_arg(request.args.get("season"), 0)
    episode = metadata.int_arg(request.args.get("episode"), 0)
    logger.info(f"Getting sources for movieId: {movie_id} (S{season}E{episode})")
    try:
        content = metadata.sources(get_client(), movie_id, season, episode,
                                   proxy_base=request.host_url.rstrip("/"))
        return success(content)
    except Exception as e:
        logger.error(f"Sources error: {e}")
        return failure("Failed to fetch streaming sources", e)

@app.route('/api/download', defaults={'target': None})
@app.route('/api/download/', endpoint='api_download_bare', defaults={'target': None})
@app.route('/api/download/<path:target>')
def api_download(target):
    return proxy_download(
        path_segment=target,
        query_url=request.args.get("url"),
        range_header=request.headers.get("Range"),
        query_string=request.query_string.decode("latin-1"),
    )

if __name__ == '__main__':
    logger.info(f"MovieBox gateway on 0.0.0.0:{config.PORT} (mirrors: {', '.join(config.MIRROR_HOSTS)})")
    app.run(host='0.0.0.0', port=config.PORT, threaded=True)
