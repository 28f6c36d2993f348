"""
Rewrite Engine

Turns every reference inside an HTML page, stylesheet or HLS playlist into
a URL that points back at this proxy. All rewriters share resolve_reference()
and proxy_link(), so a reference means the same thing wherever it is found.

The HTML and CSS passes are regular expressions, not a real tokenizer. That
is enough for the embed pages we serve, but an attribute value containing
'>' or a quoted src= inside a JS string can still be rewritten by mistake.
"""
import codecs
import html
import re
from collections import namedtuple
from urllib.parse import quote, urljoin, urlsplit

from content_class import ContentClass
from errors import RewriteFailure
from header_profiles import ANALYTICS_HOSTS, is_analytics_host
from interceptor import MARKER, render_interceptor

RewriteContext = namedtuple('RewriteContext', ['proxy_base', 'referer', 'skip_hosts'])

# A reference found in a document; only used inside a single rewrite pass
RewriteTarget = namedtuple('RewriteTarget', ['original_value', 'resolved_url', 'context'])

ATTRIBUTE = 'attribute'
SCRIPT_LITERAL = 'script_literal'
STYLESHEET_URL = 'stylesheet_url'
MANIFEST_LINE = 'manifest_line'
MANIFEST_TAG_URI = 'manifest_tag_uri'

NON_FETCHABLE_PREFIXES = ('#', 'data:', 'blob:', 'javascript:', 'mailto:', 'about:', 'tel:')

TAG_RE = re.compile(r'<(?P<tag>[a-zA-Z][a-zA-Z0-9:-]*)(?P<attrs>\s[^<>]*)?>')
ATTR_RE = re.compile(
    r'(?P<lead>\s)(?P<name>[a-zA-Z][\w:-]*)\s*=\s*'
    r'(?:(?P<q>["\'])(?P<value>.*?)(?P=q)|(?P<bare>[^\s"\'<>`]+))',
    re.DOTALL,
)
BASE_HREF_RE = re.compile(r'<base\b[^>]*?\bhref\s*=\s*(["\'])(.*?)\1', re.IGNORECASE | re.DOTALL)
HEAD_OPEN_RE = re.compile(r'<head\b[^>]*>', re.IGNORECASE)
HTML_OPEN_RE = re.compile(r'<html\b[^>]*>', re.IGNORECASE)
SCRIPT_BLOCK_RE = re.compile(r'(<script\b[^>]*>)(.*?)(</script\s*>)', re.IGNORECASE | re.DOTALL)
STYLE_BLOCK_RE = re.compile(r'(<style\b[^>]*>)(.*?)(</style\s*>)', re.IGNORECASE | re.DOTALL)
JS_URL_LITERAL_RE = re.compile(r'(["\'])(https?://[^"\'\\\s<>]+)\1', re.IGNORECASE)

CSS_URL_RE = re.compile(r'url\(\s*(["\']?)(.*?)\1\s*\)', re.IGNORECASE | re.DOTALL)
CSS_IMPORT_RE = re.compile(r'(@import\s+)(["\'])(.*?)\2', re.IGNORECASE)

MANIFEST_URI_RE = re.compile(r'(URI=)(["\'])(.*?)\2')

# Attributes that name a resource the page loads by itself
SRC_ATTRIBUTES = ('src', 'poster')
# href only loads something on <link> (stylesheets, preloads, icons)
HREF_TAGS = ('link',)

CHARSET_RE = re.compile(r'charset\s*=\s*["\']?([\w.:-]+)', re.IGNORECASE)


def is_fetchable(value):
    if not value:
        return False
    lowered = value.lower()
    if lowered.startswith(NON_FETCHABLE_PREFIXES):
        return False
    if lowered.startswith('//'):
        return True
    scheme = urlsplit(value).scheme.lower()
    return scheme in ('', 'http', 'https')


def resolve_reference(value, base_url):
    """Resolve value the way a browser would when base_url is the document's base."""
    value = value.strip()
    lowered = value.lower()
    if lowered.startswith(('http://', 'https://')):
        return value
    base = urlsplit(base_url)
    if value.startswith('//'):
        return f'{base.scheme}:{value}'
    if value.startswith('/'):
        return f'{base.scheme}://{base.netloc}{value}'
    return urljoin(base_url, value)


def proxy_link(absolute_url, proxy_base, referer=None):
    """The proxied form of absolute_url: one opaque, fully encoded query value."""
    link = proxy_base + quote(absolute_url, safe='')
    if referer:
        link += '&referer=' + quote(referer, safe='')
    return link


def plan_rewrite(value, base_url, context, kind):
    """Return a RewriteTarget for value, or None when it has to stay as it is."""
    if not value or value.startswith(context.proxy_base) or not is_fetchable(value.strip()):
        return None
    resolved = resolve_reference(value, base_url)
    if is_analytics_host(urlsplit(resolved).hostname, context.skip_hosts):
        return None
    return RewriteTarget(value, resolved, kind)


def rewrite_value(value, base_url, context, kind):
    target = plan_rewrite(value, base_url, context, kind)
    if target is None:
        return None
    return proxy_link(target.resolved_url, context.proxy_base, context.referer)


# --- Text helpers ---

def charset_of(content_type):
    match = CHARSET_RE.search(content_type or '')
    if not match:
        return 'utf-8'
    try:
        return codecs.lookup(match.group(1)).name
    except LookupError:
        return 'utf-8'


def decode_body(body, content_type):
    encoding = charset_of(content_type)
    # surrogateescape keeps undecodable bytes so they are written back untouched
    return body.decode(encoding, 'surrogateescape'), encoding


def encode_body(text, encoding):
    return text.encode(encoding, 'surrogateescape')


# --- HTML ---

def document_base(text, final_url):
    """The URL relative references resolve against, and whether the page declared it."""
    match = BASE_HREF_RE.search(text)
    if match:
        return urljoin(final_url, html.unescape(match.group(2)).strip()), True
    return final_url, False


def rewrite_tag(match, base_url, context):
    tag = match.group('tag').lower()
    attrs = match.group('attrs')
    if not attrs or tag == 'base':
        return match.group(0)

    def rewrite_attr(attr_match):
        name = attr_match.group('name').lower()
        if name not in SRC_ATTRIBUTES and not (name == 'href' and tag in HREF_TAGS):
            return attr_match.group(0)

        raw = attr_match.group('value')
        if raw is None:
            raw = attr_match.group('bare')
        quote_char = attr_match.group('q') or '"'

        new_value = rewrite_value(html.unescape(raw).strip(), base_url, context, ATTRIBUTE)
        if new_value is None:
            return attr_match.group(0)
        return f"{attr_match.group('lead')}{attr_match.group('name')}={quote_char}{html.escape(new_value)}{quote_char}"

    new_attrs = ATTR_RE.sub(rewrite_attr, attrs)
    return f"<{match.group('tag')}{new_attrs}>"


def rewrite_script_literals(text, context):
    """Rewrite quoted absolute URLs inside inline scripts."""

    def rewrite_block(block):
        opening, body, closing = block.groups()
        if MARKER in opening or not body.strip():
            return block.group(0)

        def rewrite_literal(literal):
            new_value = rewrite_value(literal.group(2), literal.group(2), context, SCRIPT_LITERAL)
            if new_value is None:
                return literal.group(0)
            return f'{literal.group(1)}{new_value}{literal.group(1)}'

        return opening + JS_URL_LITERAL_RE.sub(rewrite_literal, body) + closing

    return SCRIPT_BLOCK_RE.sub(rewrite_block, text)


def rewrite_style_blocks(text, base_url, context):
    def rewrite_block(block):
        opening, body, closing = block.groups()
        return opening + rewrite_css(body, base_url, context) + closing

    return STYLE_BLOCK_RE.sub(rewrite_block, text)


def insert_into_head(text, snippet):
    for pattern in (HEAD_OPEN_RE, HTML_OPEN_RE):
        match = pattern.search(text)
        if match:
            return text[:match.end()] + snippet + text[match.end():]
    return snippet + text


def rewrite_html(text, final_url, context):
    """
    Rewrite an HTML document fetched from final_url.

    src/poster attributes and <link href> become proxied URLs, inline
    scripts and <style> blocks are rewritten, and a <base> tag plus the
    runtime interceptor are added to <head>. Running it on its own output
    changes nothing.
    """
    base_url, declared = document_base(text, final_url)

    text = rewrite_script_literals(text, context)
    text = rewrite_style_blocks(text, base_url, context)
    text = TAG_RE.sub(lambda m: rewrite_tag(m, base_url, context), text)

    snippet = ''
    if not declared:
        snippet += f'\n<base href="{html.escape(urljoin(final_url, "."))}">'
    if MARKER not in text:
        snippet += '\n' + render_interceptor(context.proxy_base, context.referer, context.skip_hosts)
    if snippet:
        text = insert_into_head(text, snippet + '\n')
    return text


# --- CSS ---

def rewrite_css(text, base_url, context):
    def rewrite_url(match):
        new_value = rewrite_value(match.group(2).strip(), base_url, context, STYLESHEET_URL)
        if new_value is None:
            return match.group(0)
        return f'url("{new_value}")'

    def rewrite_import(match):
        new_value = rewrite_value(match.group(3).strip(), base_url, context, STYLESHEET_URL)
        if new_value is None:
            return match.group(0)
        return f'{match.group(1)}{match.group(2)}{new_value}{match.group(2)}'

    text = CSS_IMPORT_RE.sub(rewrite_import, text)
    return CSS_URL_RE.sub(rewrite_url, text)


# --- HLS ---

def rewrite_manifest(text, manifest_url, context):
    """
    Rewrite an HLS playlist line by line.

    URI lines are replaced by proxied URLs and tags keep everything but
    their quoted URI="..." value. Line order and line endings are kept
    exactly, because playlists are positional.
    """
    output = []
    for line in text.splitlines(True):
        content = line.rstrip('\r\n')
        ending = line[len(content):]
        stripped = content.strip().lstrip('\ufeff')

        if not stripped:
            output.append(line)
            continue

        if stripped.startswith('#'):
            if 'URI=' in content:
                content = MANIFEST_URI_RE.sub(lambda m: rewrite_tag_uri(m, manifest_url, context), content)
            output.append(content + ending)
            continue

        new_value = rewrite_value(stripped, manifest_url, context, MANIFEST_LINE)
        if new_value is None:
            output.append(line)
        else:
            output.append(content.replace(stripped, new_value, 1) + ending)
    return ''.join(output)


def rewrite_tag_uri(match, manifest_url, context):
    new_value = rewrite_value(match.group(3), manifest_url, context, MANIFEST_TAG_URI)
    if new_value is None:
        return match.group(0)
    return f'{match.group(1)}{match.group(2)}{new_value}{match.group(2)}'


# --- Dispatch ---

TEXT_REWRITERS = {
    ContentClass.HTML: rewrite_html,
    ContentClass.HLS_MANIFEST: rewrite_manifest,
    ContentClass.STYLESHEET: rewrite_css,
}


def make_context(proxy_base, referer=None, skip_hosts=ANALYTICS_HOSTS):
    return RewriteContext(proxy_base, referer, tuple(skip_hosts))


def rewrite_body(content_class, body, final_url, content_type, context):
    """
    Rewrite a fully buffered body for its content class and return bytes.

    Raises RewriteFailure when the body cannot be processed; the caller
    decides how to degrade.
    """
    rewriter = TEXT_REWRITERS.get(content_class)
    if rewriter is None or not body:
        return body
    try:
        text, encoding = decode_body(body, content_type)
        return encode_body(rewriter(text, final_url, context), encoding)
    except RewriteFailure:
        raise
    except Exception as e:
        raise RewriteFailure(f"Could not rewrite {content_class.value} from {final_url}: {e}") from e
