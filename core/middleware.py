import logging
import time

logger = logging.getLogger(__name__)


class RequestLogMiddleware:
    """Log one line per API call: method, path, status, user and duration."""
    PREFIXES = ('/api/',)

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        path = request.path or ''
        if not any(path.startswith(p) for p in self.PREFIXES):
            return self.get_response(request)
        started = time.monotonic()
        response = self.get_response(request)
        elapsed_ms = (time.monotonic() - started) * 1000
        user = getattr(request, 'user', None)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level, '%s %s -> %s user=%s %.1fms',
            request.method, path, response.status_code,
            getattr(user, 'pk', None) if user is not None else None, elapsed_ms,
        )
        return response
