"""
Header Profile Resolver
Picks the outbound request headers an upstream expects to see before it
will serve an embed page, a playlist or a media segment.
"""
import re
from collections import namedtuple
from urllib.parse import urlsplit

import settings

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)
HTML_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8'
ANY_ACCEPT = '*/*'
ACCEPT_LANGUAGE = 'en-US,en;q=0.9'

# Client request headers copied onto the outbound request as-is
FORWARDED_CLIENT_HEADERS = ('Range', 'X-Requested-With')

HeaderProfile = namedtuple(
    'HeaderProfile',
    ['user_agent', 'accept', 'accept_language', 'referer', 'origin', 'extra_headers'],
)

HeaderRule = namedtuple('HeaderRule', ['host', 'path_prefix', 'profile'])


def make_profile(referer=None, origin=None, accept=ANY_ACCEPT, user_agent=DEFAULT_USER_AGENT,
                 accept_language=ACCEPT_LANGUAGE, extra_headers=None):
    return HeaderProfile(
        user_agent=user_agent,
        accept=accept,
        accept_language=accept_language,
        referer=referer,
        origin=origin,
        extra_headers=dict(extra_headers or {}),
    )


DEFAULT_PROFILE = make_profile()

# First match wins, so path-specific rules come before host-wide ones.
PROFILE_RULES = [
    HeaderRule('megacloud.blog', '/embed-2/', make_profile(
        referer='https://megacloud.blog/',
        origin='https://megacloud.blog',
        accept=HTML_ACCEPT,
    )),
    HeaderRule('megacloud.blog', None, make_profile(
        referer='https://megacloud.blog/',
        origin='https://megacloud.blog',
    )),
    # Segment CDN that only serves requests coming from the embed site
    HeaderRule('megacloud.club', None, make_profile(
        referer='https://megacloud.blog/',
        origin='https://megacloud.blog',
    )),
    HeaderRule('hianime.to', '/ajax/', make_profile(
        referer='https://hianime.to/',
        origin='https://hianime.to',
        accept='application/json, text/javascript, */*; q=0.01',
        extra_headers={'X-Requested-With': 'XMLHttpRequest'},
    )),
    HeaderRule('hianime.to', None, make_profile(
        referer='https://hianime.to/',
        origin='https://hianime.to',
    )),
    HeaderRule('streameeeeee.site', None, make_profile(
        referer='https://streameeeeee.site/',
        origin='https://streameeeeee.site',
    )),
]

# Telemetry hosts the rewriter never routes through the proxy
ANALYTICS_HOSTS = (
    'google-analytics.com',
    'googletagmanager.com',
    'doubleclick.net',
    'googlesyndication.com',
    'scorecardresearch.com',
    'facebook.net',
    'histats.com',
    'cloudflareinsights.com',
    'yandex.ru',
)


def host_matches(hostname, host):
    """True when hostname is host itself or one of its subdomains."""
    if not hostname:
        return False
    hostname = hostname.lower()
    host = host.lower()
    return hostname == host or hostname.endswith('.' + host)


def is_analytics_host(hostname, analytics_hosts=ANALYTICS_HOSTS):
    return any(host_matches(hostname, host) for host in analytics_hosts)


def match_rule(target_url, rules=PROFILE_RULES):
    parts = urlsplit(target_url)
    for rule in rules:
        if not host_matches(parts.hostname, rule.host):
            continue
        if rule.path_prefix and not (parts.path or '/').startswith(rule.path_prefix):
            continue
        return rule
    return None


def origin_of(url):
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f'{parts.scheme}://{parts.netloc}'


def find_embed_token(path, min_length=None):
    """Return the first path segment that looks like an embed identifier (a long hex token)."""
    min_length = min_length or settings.EMBED_TOKEN_MIN_LENGTH
    pattern = re.compile(r'(?<=/)([0-9a-fA-F]{%d,})(?=/|$)' % min_length)
    match = pattern.search(path or '')
    return match.group(1) if match else None


def upgrade_referer(declared_referer, target_url):
    """
    A bare-origin referer ("https://site/") is expanded into the embed page URL
    when the target path carries an embed token, so one hint covers the whole
    session. Anything else is returned unchanged.
    """
    parts = urlsplit(declared_referer)
    if not parts.scheme or not parts.netloc:
        return declared_referer
    if parts.path not in ('', '/') or parts.query:
        return declared_referer

    token = find_embed_token(urlsplit(target_url).path)
    if not token:
        return declared_referer
    return settings.EMBED_REFERER_TEMPLATE.format(
        origin=f'{parts.scheme}://{parts.netloc}', token=token)


def resolve(target_url, declared_referer=None, client_headers=None, rules=PROFILE_RULES):
    """
    Build the HeaderProfile for target_url.

    The first matching rule supplies the defaults. A referer declared by the
    caller takes precedence over the rule's referer. Range and X-Requested-With
    from the client are appended to extra_headers.
    """
    rule = match_rule(target_url, rules)
    base = rule.profile if rule else DEFAULT_PROFILE

    referer = base.referer
    origin = base.origin
    if declared_referer:
        referer = upgrade_referer(declared_referer, target_url)
        if not origin:
            origin = origin_of(referer)

    extra_headers = dict(base.extra_headers)
    if client_headers:
        for name in FORWARDED_CLIENT_HEADERS:
            value = client_headers.get(name)
            if value:
                extra_headers[name] = value

    return base._replace(referer=referer, origin=origin, extra_headers=extra_headers)


def build_headers(profile):
    """Flatten a HeaderProfile into the outbound header dict."""
    headers = {
        'User-Agent': profile.user_agent,
        'Accept': profile.accept,
        'Accept-Language': profile.accept_language,
    }
    if profile.referer:
        headers['Referer'] = profile.referer
    if profile.origin:
        headers['Origin'] = profile.origin
    headers.update(profile.extra_headers)
    return headers
