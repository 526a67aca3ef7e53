import json
import logging
import time
import uuid

logger = logging.getLogger(__name__)


class RequestLogMiddleware:
    """Tag each request with an ``X-Request-ID`` and log one line per response."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        start = time.monotonic()
        try:
            response = self.get_response(request)
        except Exception:
            logger.exception('unhandled error on %s %s after %sms', request.method, request.path,
                             round((time.monotonic() - start) * 1000, 2))
            raise
        logger.info(json.dumps({
            'request_id': request_id,
            'method': request.method,
            'path': request.path,
            'status_code': response.status_code,
            'duration_ms': round((time.monotonic() - start) * 1000, 2),
            'user_id': getattr(getattr(request, 'user', None), 'pk', None),
        }))
        response['X-Request-ID'] = request_id
        return response
