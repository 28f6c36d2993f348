"""
Upstream Fetcher
Performs the outbound request and hands back either a fully read body
(documents that get rewritten) or a live stream (media, byte ranges).
"""
import logging
import time

import requests

import settings
from content_class import BUFFERED_CLASSES, classify
from errors import InvalidRequest, RedirectLimitExceeded, UpstreamTimeout, UpstreamUnreachable

logger = logging.getLogger(__name__)


class UpstreamResponse:
    """
    The upstream answer for a single proxied request.

    headers has lower-cased names; 'set-cookie' maps to a list so repeated
    cookies survive. When body is None the payload is still on the wire
    and must be consumed through iter_body().
    """

    def __init__(self, status_code, headers, url, content_class, body=None,
                 response=None, session=None, chunk_size=None):
        self.status_code = status_code
        self.headers = headers
        self.url = url
        self.content_class = content_class
        self.body = body
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self._response = response
        self._session = session
        self.closed = False

    @property
    def buffered(self):
        return self.body is not None

    def iter_body(self):
        if self.buffered:
            if self.body:
                yield self.body
            return
        try:
            for chunk in self._response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk
        finally:
            self.close()

    def close(self):
        if self.closed:
            return
        self.closed = True
        if self._response is not None:
            self._response.close()
        if self._session is not None:
            self._session.close()


def collect_headers(resp):
    headers = {}
    for name, value in resp.headers.items():
        headers[name.lower()] = value

    raw_headers = getattr(resp.raw, 'headers', None)
    if raw_headers is not None and hasattr(raw_headers, 'getlist'):
        cookies = raw_headers.getlist('Set-Cookie')
    else:
        cookies = [headers['set-cookie']] if 'set-cookie' in headers else []
    if cookies:
        headers['set-cookie'] = list(cookies)
    else:
        headers.pop('set-cookie', None)
    return headers


def read_before(resp, deadline, chunk_size):
    """Read the whole body, giving up once the deadline has passed."""
    chunks = []
    for chunk in resp.iter_content(chunk_size=chunk_size):
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise UpstreamTimeout(f"Upstream body not complete in time: {resp.url}")
    return b''.join(chunks)


def fetch(target_url, headers, method='GET', timeout=None, max_redirects=None,
          chunk_size=None, classifier=classify):
    """
    Request target_url and classify the answer.

    Any upstream status is returned as a response; only network failures
    raise. HTML, playlists, stylesheets and JSON are read in full unless the
    upstream answered with partial content; everything else stays streamed.

    timeout is the total budget for reaching the upstream and reading a
    buffered body. Streamed bodies are only bound per read, a long video
    is allowed to take longer than the budget.
    """
    timeout = timeout if timeout is not None else settings.UPSTREAM_TIMEOUT
    max_redirects = max_redirects if max_redirects is not None else settings.MAX_REDIRECTS
    deadline = time.monotonic() + timeout

    session = requests.Session()
    session.max_redirects = max_redirects
    try:
        resp = session.request(
            method,
            target_url,
            headers=headers,
            stream=True,
            allow_redirects=True,
            timeout=timeout,
        )
    except requests.exceptions.Timeout as e:
        session.close()
        raise UpstreamTimeout(f"Upstream timed out after {timeout:g}s: {target_url}") from e
    except requests.exceptions.TooManyRedirects as e:
        session.close()
        raise RedirectLimitExceeded(f"More than {max_redirects} redirects: {target_url}") from e
    except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema) as e:
        session.close()
        raise InvalidRequest(f"Invalid target URL: {target_url}") from e
    except requests.exceptions.RequestException as e:
        session.close()
        raise UpstreamUnreachable(f"Upstream unreachable: {e}") from e

    response_headers = collect_headers(resp)
    content_class = classifier(resp.url, response_headers)
    upstream = UpstreamResponse(
        resp.status_code,
        response_headers,
        resp.url,
        content_class,
        response=resp,
        session=session,
        chunk_size=chunk_size,
    )

    if resp.history:
        logger.debug(f"Followed {len(resp.history)} redirect(s): {target_url} -> {resp.url}")

    if time.monotonic() > deadline:
        upstream.close()
        raise UpstreamTimeout(f"Upstream timed out after {timeout:g}s: {target_url}")

    if method == 'HEAD':
        upstream.body = b''
        upstream.close()
    elif content_class in BUFFERED_CLASSES and resp.status_code != 206:
        try:
            upstream.body = read_before(resp, deadline, upstream.chunk_size)
        except requests.exceptions.Timeout as e:
            raise UpstreamTimeout(f"Upstream timed out while reading {resp.url}") from e
        except requests.exceptions.RequestException as e:
            raise UpstreamUnreachable(f"Upstream body could not be read: {e}") from e
        finally:
            upstream.close()

    return upstream
