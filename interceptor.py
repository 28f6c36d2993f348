"""
Script injected into proxied HTML pages.
It routes URLs built at runtime (fetch, XHR, script/img/media src) through
the proxy, since static rewriting never sees them. The server only fills in
a template; nothing here holds state.
"""
import json

MARKER = 'data-embed-proxy'

INTERCEPTOR_TEMPLATE = '''<script %(marker)s="interceptor">
(function() {
    var PROXY_BASE = %(proxy_base)s;
    var REFERER = %(referer)s;
    var SKIP_HOSTS = %(skip_hosts)s;

    function skipHost(host) {
        host = host.toLowerCase();
        for (var i = 0; i < SKIP_HOSTS.length; i++) {
            var h = SKIP_HOSTS[i];
            if (host === h || host.slice(-(h.length + 1)) === '.' + h) return true;
        }
        return false;
    }

    function proxify(value) {
        if (typeof value !== 'string' || !value) return value;
        if (value.indexOf(PROXY_BASE) === 0) return value;
        if (/^(data|blob|about|javascript|mailto):/i.test(value) || value.charAt(0) === '#') return value;
        var url;
        try {
            url = new URL(value, document.baseURI);
        } catch (e) {
            return value;
        }
        if (url.protocol !== 'http:' && url.protocol !== 'https:') return value;
        if (url.origin === location.origin || skipHost(url.hostname)) return value;
        var proxied = PROXY_BASE + encodeURIComponent(url.href);
        if (REFERER) proxied += '&referer=' + encodeURIComponent(REFERER);
        return proxied;
    }

    var originalFetch = window.fetch;
    if (originalFetch) {
        window.fetch = function(input, init) {
            if (typeof input === 'string') {
                input = proxify(input);
            } else if (input instanceof URL) {
                input = proxify(input.href);
            } else if (input && input.url && window.Request && input instanceof Request) {
                var target = proxify(input.url);
                if (target !== input.url) input = new Request(target, input);
            }
            return originalFetch.call(this, input, init);
        };
    }

    var originalOpen = XMLHttpRequest.prototype.open;
    XMLHttpRequest.prototype.open = function(method, url) {
        var args = Array.prototype.slice.call(arguments);
        args[1] = proxify(url instanceof URL ? url.href : url);
        return originalOpen.apply(this, args);
    };

    function wrapSrc(proto) {
        if (!proto) return;
        var descriptor = Object.getOwnPropertyDescriptor(proto, 'src');
        if (!descriptor || !descriptor.set) return;
        Object.defineProperty(proto, 'src', {
            configurable: true,
            enumerable: descriptor.enumerable,
            get: descriptor.get,
            set: function(value) {
                descriptor.set.call(this, proxify(value));
            }
        });
    }
    wrapSrc(window.HTMLScriptElement && HTMLScriptElement.prototype);
    wrapSrc(window.HTMLImageElement && HTMLImageElement.prototype);
    wrapSrc(window.HTMLMediaElement && HTMLMediaElement.prototype);
    wrapSrc(window.HTMLSourceElement && HTMLSourceElement.prototype);

    var originalSetAttribute = Element.prototype.setAttribute;
    Element.prototype.setAttribute = function(name, value) {
        if (typeof name === 'string' && name.toLowerCase() === 'src') {
            value = proxify(String(value));
        }
        return originalSetAttribute.call(this, name, value);
    };
})();
</script>'''


def js_literal(value):
    """JSON-encode value so it is safe inside an inline <script> block."""
    return json.dumps(value).replace('</', '<\\/')


def render_interceptor(proxy_base, referer=None, skip_hosts=()):
    return INTERCEPTOR_TEMPLATE % {
        'marker': MARKER,
        'proxy_base': js_literal(proxy_base),
        'referer': js_literal(referer or ''),
        'skip_hosts': js_literal(list(skip_hosts)),
    }
