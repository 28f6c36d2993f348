"""Errors raised while proxying a resource, each mapped to the HTTP status the client sees."""


class ProxyError(Exception):
    """Internal proxy error"""
    status_code = 500
    kind = 'proxy_error'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class InvalidRequest(ProxyError):
    """Missing or malformed target URL"""
    status_code = 400
    kind = 'invalid_request'


class UpstreamTimeout(ProxyError):
    """Upstream did not answer in time"""
    status_code = 504
    kind = 'upstream_timeout'


class UpstreamUnreachable(ProxyError):
    """Upstream could not be reached"""
    status_code = 502
    kind = 'upstream_unreachable'


class RedirectLimitExceeded(ProxyError):
    """Too many redirects"""
    status_code = 502
    kind = 'redirect_limit_exceeded'


class RewriteFailure(ProxyError):
    """Response body could not be rewritten"""
    kind = 'rewrite_failure'
