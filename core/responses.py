"""
JSON envelope shared by every API response.

Success: {"success": true, "data": ..., "message": ..., "timestamp": ...}
Failure: {"success": false, "error": KIND, "message": ..., "errors"?: ..., "timestamp": ...}
"""
from django.utils import timezone
from rest_framework import status
from rest_framework.response import Response

FETCHED = 'Data retrieved successfully'
CREATED = 'Resource created successfully'
UPDATED = 'Resource updated successfully'
DELETED = 'Resource deleted successfully'


def _now() -> str:
    return timezone.now().isoformat()


def success_response(data=None, message=FETCHED, status_code=status.HTTP_200_OK, **extra):
    body = {
        'success': True,
        'data': data,
        'message': message,
        'timestamp': _now(),
    }
    body.update(extra)
    return Response(body, status=status_code)


def created_response(data=None, message=CREATED):
    return success_response(data, message, status.HTTP_201_CREATED)


def error_body(kind: str, message: str, errors=None, **extra) -> dict:
    body = {
        'success': False,
        'error': kind,
        'message': message,
        'timestamp': _now(),
    }
    if errors:
        body['errors'] = errors
    body.update(extra)
    return body
