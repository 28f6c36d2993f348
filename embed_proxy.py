#!/usr/bin/env python3
"""
EMBED PROXY - Same-origin relay for third-party video embeds
Fetches embed pages, playlists and media with the headers each upstream
expects, and rewrites every reference so the browser keeps talking to us.

Links are written against the host the request arrived on. X-Forwarded-Host
and X-Forwarded-Proto are only honoured with TRUST_FORWARDED_HEADERS set,
since any client can send them.
"""
import logging
from collections import namedtuple
from urllib.parse import quote, unquote, urlsplit

from flask import Flask, Response, current_app, request, url_for
from werkzeug.exceptions import HTTPException

import header_profiles
import settings
from content_class import REWRITTEN_CLASSES
from emitter import add_cors_headers, emit, emit_error
from errors import InvalidRequest, ProxyError, RewriteFailure
from rewriter import make_context, rewrite_body
from upstream import fetch

settings.configure_logging()
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config.update(
    UPSTREAM_TIMEOUT=settings.UPSTREAM_TIMEOUT,
    MAX_REDIRECTS=settings.MAX_REDIRECTS,
    CHUNK_SIZE=settings.CHUNK_SIZE,
    TRUST_FORWARDED_HEADERS=settings.TRUST_FORWARDED_HEADERS,
    EMBED_URL_TEMPLATE=settings.EMBED_URL_TEMPLATE,
    HEADER_PROFILE_RULES=header_profiles.PROFILE_RULES,
    ANALYTICS_HOSTS=header_profiles.ANALYTICS_HOSTS,
)

ProxyRequest = namedtuple(
    'ProxyRequest',
    ['target_url', 'declared_referer', 'client_range', 'client_method', 'client_headers'],
)

# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def log_request(mode, method, url, status="→"):
    """Consistent logging format"""
    logger.info(f"[{mode.upper():8}] {status} {method:4} {url[:120]}")


def parse_target_url(raw):
    """Validate the url query parameter and return it as an absolute http(s) URL."""
    if not raw or not raw.strip():
        raise InvalidRequest("Missing url parameter")

    target_url = raw.strip()
    # Some players encode the value twice; a space there was an unencoded '+'
    if target_url.lower().startswith(('http%3a', 'https%3a')):
        target_url = unquote(target_url.replace(' ', '+'))

    parts = urlsplit(target_url)
    if parts.scheme.lower() not in ('http', 'https') or not parts.netloc:
        raise InvalidRequest(f"Not an absolute http(s) URL: {target_url[:200]}")
    return target_url


def build_proxy_request(target_url):
    client_headers = {}
    for name in header_profiles.FORWARDED_CLIENT_HEADERS:
        if request.headers.get(name):
            client_headers[name] = request.headers[name]
    return ProxyRequest(
        target_url=target_url,
        declared_referer=request.args.get('referer') or None,
        client_range=request.headers.get('Range'),
        client_method=request.method,
        client_headers=client_headers,
    )


def proxy_base_url():
    """This service's own /resource?url= prefix, as the browser sees it."""
    if current_app.config['TRUST_FORWARDED_HEADERS'] and request.headers.get('X-Forwarded-Host'):
        # Behind a port forwarder (Codespaces and the like)
        forwarded_proto = request.headers.get('X-Forwarded-Proto', 'https')
        proxy_origin = f"{forwarded_proto}://{request.headers['X-Forwarded-Host']}"
    else:
        proxy_origin = request.url_root.rstrip('/')
    return f"{proxy_origin}{url_for('resource')}?url="


def preflight_response():
    return add_cors_headers(Response('', status=204))


def proxy_resource(proxy_request, proxy_base, mode='resource'):
    """
    Fetch, classify, rewrite and emit one upstream resource.

    Documents are rewritten completely before any byte is sent. If rewriting
    fails the original body goes out instead; an unproxied page still plays
    better than an error.
    """
    config = current_app.config
    method = proxy_request.client_method
    target_url = proxy_request.target_url

    profile = header_profiles.resolve(
        target_url,
        proxy_request.declared_referer,
        proxy_request.client_headers,
        rules=config['HEADER_PROFILE_RULES'],
    )
    log_request(mode, method, target_url)

    upstream = fetch(
        target_url,
        header_profiles.build_headers(profile),
        method=method,
        timeout=config['UPSTREAM_TIMEOUT'],
        max_redirects=config['MAX_REDIRECTS'],
        chunk_size=config['CHUNK_SIZE'],
    )

    body = None
    if (upstream.buffered and upstream.content_class in REWRITTEN_CLASSES
            and method != 'HEAD' and 200 <= upstream.status_code < 300):
        context = make_context(proxy_base, profile.referer, config['ANALYTICS_HOSTS'])
        try:
            body = rewrite_body(
                upstream.content_class,
                upstream.body,
                upstream.url,
                upstream.headers.get('content-type', ''),
                context,
            )
        except RewriteFailure as e:
            logger.warning(f"{e.message}; sending the original body")

    log_request(mode, method, target_url, f"✓ {upstream.status_code} {upstream.content_class.value}")
    return emit(upstream, body, proxy_request.client_range, method)

# =============================================================================
# RESOURCE PROXY
# =============================================================================

@app.route('/resource', methods=['GET', 'HEAD', 'OPTIONS'])
def resource():
    """Proxy a single resource: /resource?url=<encoded url>&referer=<encoded referer>"""
    if request.method == 'OPTIONS':
        return preflight_response()

    target_url = parse_target_url(request.args.get('url'))
    return proxy_resource(build_proxy_request(target_url), proxy_base_url())

# =============================================================================
# EMBED ENTRY POINT
# =============================================================================

@app.route('/embed', methods=['GET', 'OPTIONS'])
def embed():
    """Load an embed page by id: /embed?id=<id>&k=1&autoPlay=1&oa=0&asi=1"""
    if request.method == 'OPTIONS':
        return preflight_response()

    embed_id = request.args.get('id', '').strip()
    if not embed_id:
        raise InvalidRequest("Missing id parameter")

    embed_url = current_app.config['EMBED_URL_TEMPLATE'].format(
        id=quote(embed_id, safe=''),
        k=quote(request.args.get('k', '1'), safe=''),
        autoPlay=quote(request.args.get('autoPlay', '1'), safe=''),
        oa=quote(request.args.get('oa', '0'), safe=''),
        asi=quote(request.args.get('asi', '1'), safe=''),
    )
    return proxy_resource(build_proxy_request(embed_url), proxy_base_url(), mode='embed')

# =============================================================================
# ERRORS
# =============================================================================

@app.errorhandler(ProxyError)
def handle_proxy_error(error):
    log_request('error', request.method, request.full_path, f"✗ {error.status_code} {error.message}")
    return emit_error(error, request.accept_mimetypes)


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    logger.exception(f"Unhandled error for {request.method} {request.full_path}")
    return emit_error(ProxyError(), request.accept_mimetypes)

# =============================================================================
# HOMEPAGE
# =============================================================================

@app.route('/')
def index():
    """Landing page with an embed loader"""
    html = '''
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Embed Proxy</title>
    <style>
        body { background: #1a1a2e; color: #fff; font-family: system-ui, -apple-system, sans-serif; padding: 20px; }
        .container { max-width: 900px; margin: 0 auto; }
        input { padding: 10px; width: 300px; margin-right: 10px; }
        button { padding: 10px 20px; background: #0f3460; color: white; border: none; cursor: pointer; }
        iframe { width: 100%; height: 500px; border: none; margin-top: 20px; background: #16213e; }
        code { color: #8b5cf6; }
    </style>
</head>
<body>
    <div class="container">
        <h1>🎬 Embed Proxy</h1>
        <p>Endpoints: <code>/embed?id=ID</code> and <code>/resource?url=URL&amp;referer=REFERER</code></p>
        <input type="text" id="embedId" placeholder="Embed ID">
        <button onclick="loadEmbed()">Load</button>
        <div id="player"></div>
    </div>
    <script>
        function loadEmbed() {
            const id = document.getElementById('embedId').value.trim();
            if (id) {
                document.getElementById('player').innerHTML =
                    '<iframe allowfullscreen src="/embed?id=' + encodeURIComponent(id) + '&autoPlay=1"></iframe>';
            }
        }
    </script>
</body>
</html>
'''
    return Response(html, mimetype='text/html')

# =============================================================================
# MAIN
# =============================================================================

if __name__ == '__main__':
    logger.info("=" * 70)
    logger.info("🎬 EMBED PROXY")
    logger.info("  /embed?id=...                  → embed page, rewritten")
    logger.info("  /resource?url=...&referer=...  → any page, playlist or segment")
    logger.info("=" * 70)
    logger.info(f"Starting server on http://0.0.0.0:{settings.PORT}")

    app.run(host='0.0.0.0', port=settings.PORT, debug=False, threaded=True)
