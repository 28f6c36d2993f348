"""Content Classifier: decides how a proxied response body is handled."""
from enum import Enum
from urllib.parse import urlsplit


class ContentClass(Enum):
    HTML = 'html'
    HLS_MANIFEST = 'hls_manifest'
    JSON = 'json'
    BINARY_MEDIA = 'binary_media'
    STYLESHEET = 'stylesheet'
    OPAQUE = 'opaque'


# Classes whose body is read completely before anything is sent
BUFFERED_CLASSES = frozenset([
    ContentClass.HTML,
    ContentClass.HLS_MANIFEST,
    ContentClass.JSON,
    ContentClass.STYLESHEET,
])

# Classes whose body goes through a rewriter
REWRITTEN_CLASSES = frozenset([
    ContentClass.HTML,
    ContentClass.HLS_MANIFEST,
    ContentClass.STYLESHEET,
])

MEDIA_SUFFIXES = ('.mp4', '.ts', '.m4s')


def classify(url, headers):
    """
    Order matters: some upstreams label playlists text/plain, so the .m3u8
    suffix is checked even when a generic content type is present.
    """
    content_type = (headers.get('content-type') or '').lower()
    path = urlsplit(url).path.lower()

    if 'text/html' in content_type:
        return ContentClass.HTML
    if 'mpegurl' in content_type or 'm3u8' in content_type or path.endswith('.m3u8'):
        return ContentClass.HLS_MANIFEST
    if 'application/json' in content_type:
        return ContentClass.JSON
    if 'video' in content_type or 'audio' in content_type or path.endswith(MEDIA_SUFFIXES):
        return ContentClass.BINARY_MEDIA
    if 'text/css' in content_type or path.endswith('.css'):
        return ContentClass.STYLESHEET
    return ContentClass.OPAQUE
