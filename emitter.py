"""
Response Emitter
Builds the Flask response for an upstream answer: filtered headers, CORS,
partial-content status, and a buffered or streamed body.
"""
import json
import logging

from flask import Response, stream_with_context
from markupsafe import escape

logger = logging.getLogger(__name__)

# Never a blanket copy: upstream CSP / X-Frame-Options would break the embed
FORWARDED_RESPONSE_HEADERS = (
    'content-type',
    'content-length',
    'content-range',
    'accept-ranges',
    'cache-control',
    'etag',
    'last-modified',
    'set-cookie',
)

HEADER_NAMES = {
    'content-type': 'Content-Type',
    'content-length': 'Content-Length',
    'content-range': 'Content-Range',
    'accept-ranges': 'Accept-Ranges',
    'cache-control': 'Cache-Control',
    'etag': 'ETag',
    'last-modified': 'Last-Modified',
    'set-cookie': 'Set-Cookie',
}

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, HEAD, OPTIONS',
    'Access-Control-Allow-Headers': '*',
    'Access-Control-Expose-Headers': 'Content-Length, Content-Range, Accept-Ranges, Content-Type',
}

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def add_cors_headers(response):
    for name, value in CORS_HEADERS.items():
        response.headers[name] = value
    return response


def relay_status(upstream, client_range=None):
    """206 whenever the upstream served a byte range, otherwise the upstream's own status."""
    if upstream.status_code == 206:
        return 206
    if client_range and upstream.status_code == 200 and upstream.headers.get('content-range'):
        return 206
    return upstream.status_code


def copy_headers(response, upstream, keep_length):
    for name in FORWARDED_RESPONSE_HEADERS:
        value = upstream.headers.get(name)
        if not value:
            continue
        if name == 'content-length' and not keep_length:
            continue
        if name == 'set-cookie':
            for cookie in value:
                response.headers.add(HEADER_NAMES[name], cookie)
        else:
            response.headers[HEADER_NAMES[name]] = value


def stream_body(upstream):
    """Relay upstream chunks in order. Once bytes are out, a failure can only drop the connection."""
    sent = 0
    try:
        for chunk in upstream.iter_body():
            sent += len(chunk)
            yield chunk
    except GeneratorExit:
        logger.info(f"Client went away after {sent} bytes: {upstream.url}")
        raise
    except Exception:
        logger.exception(f"Upstream stream failed after {sent} bytes: {upstream.url}")
        raise
    finally:
        upstream.close()


def emit(upstream, body=None, client_range=None, method='GET'):
    """
    Turn an UpstreamResponse into a Flask response.

    body, when given, replaces the upstream payload (a rewritten document).
    Buffered payloads are sent as-is; streamed payloads are piped chunk by
    chunk and the upstream connection is closed when the client is done.
    """
    status = relay_status(upstream, client_range)
    content_type = upstream.headers.get('content-type') or DEFAULT_CONTENT_TYPE
    decoded = upstream.headers.get('content-encoding', '').lower() not in ('', 'identity')

    if body is not None or upstream.buffered:
        payload = body if body is not None else upstream.body
        response = Response(payload, status=status, content_type=content_type)
        # HEAD keeps the upstream length; a real body gets its own
        copy_headers(response, upstream, keep_length=(method == 'HEAD' and not decoded))
    else:
        response = Response(
            stream_with_context(stream_body(upstream)),
            status=status,
            content_type=content_type,
        )
        # requests undoes Content-Encoding, so the upstream length is only right without one
        copy_headers(response, upstream, keep_length=not decoded)
        # Runs even when the client leaves before the first chunk
        response.call_on_close(upstream.close)

    return add_cors_headers(response)


def wants_json(accept_mimetypes):
    best = accept_mimetypes.best_match(['text/html', 'application/json'])
    return best == 'application/json' and accept_mimetypes[best] > accept_mimetypes['text/html']


def emit_error(error, accept_mimetypes):
    """Render a ProxyError as JSON or a small HTML page, whichever the client prefers."""
    if wants_json(accept_mimetypes):
        payload = json.dumps({'error': error.kind, 'message': error.message})
        response = Response(payload, status=error.status_code, mimetype='application/json')
    else:
        page = f'<!DOCTYPE html><html><head><title>Error</title></head><body><h1>Error</h1><p>{escape(error.message)}</p></body></html>'
        response = Response(page, status=error.status_code, mimetype='text/html')
    return add_cors_headers(response)
