"""
Live notification endpoints.

Implements:
- GET /notifications/stream/ - Server-sent events for the requested groups
- GET /notifications/groups/ - Group names and subscriber counts
"""
import json
import logging
import re

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.http import StreamingHttpResponse
from rest_framework.renderers import BaseRenderer, JSONRenderer
from rest_framework.views import APIView

from core.exceptions import InventoryValidationError
from core.responses import success_response
from .hub import ALL, QueueSubscriber, hub, role_group

logger = logging.getLogger(__name__)


class EventStreamRenderer(BaseRenderer):
    """
    Lets EventSource clients (Accept: text/event-stream) pass content
    negotiation. Error bodies are still written as JSON.
    """
    media_type = 'text/event-stream'
    format = 'sse'
    charset = 'utf-8'

    def render(self, data, accepted_media_type=None, renderer_context=None):
        return json.dumps(data, cls=DjangoJSONEncoder).encode(self.charset)

GROUP_PATTERN = re.compile(r'^(all|dashboard|product:\d+|role:[\w-]+)$')
ROLE_PATTERN = re.compile(r'^[\w-]+$')


def requested_groups(request):
    """
    Groups a stream subscribes to: always "all", plus ?groups=a,b and ?role=x.

    Raises:
        InventoryValidationError: On a malformed group or role name
    """
    groups = [ALL]
    raw = request.query_params.get('groups', '')
    invalid = []
    for name in (part.strip() for part in raw.split(',')):
        if not name:
            continue
        if not GROUP_PATTERN.match(name):
            invalid.append(name)
        elif name not in groups:
            groups.append(name)

    role = request.query_params.get('role', '').strip()
    if role:
        if not ROLE_PATTERN.match(role):
            invalid.append(f"role:{role}")
        elif role_group(role) not in groups:
            groups.append(role_group(role))

    if invalid:
        raise InventoryValidationError(
            "Invalid subscription groups",
            errors={'groups': [f"Unknown group: {name}" for name in invalid]},
        )
    return groups


def event_stream(subscriber, groups, keepalive):
    """Yield SSE frames until the client goes away."""
    try:
        yield f": subscribed to {','.join(groups)}\n\n"
        while not subscriber.closed:
            message = subscriber.get(timeout=keepalive)
            if message is None:
                yield ": keep-alive\n\n"
            else:
                yield message.as_sse()
    finally:
        hub.leave(subscriber)
        subscriber.close()
        logger.info(f"{subscriber!r} disconnected")


class EventStreamView(APIView):
    """
    GET: Open a text/event-stream connection.

    Query Parameters:
        - groups: Comma-separated group names (dashboard, product:<id>, role:<role>)
        - role: Shortcut for role:<role>
    """
    renderer_classes = [JSONRenderer, EventStreamRenderer]

    def get(self, request):
        groups = requested_groups(request)
        subscriber = QueueSubscriber(maxsize=settings.NOTIFICATIONS_QUEUE_SIZE)
        for group in groups:
            hub.join(subscriber, group)
        logger.info(f"{subscriber!r} connected to {groups}")

        response = StreamingHttpResponse(
            event_stream(subscriber, groups, settings.NOTIFICATIONS_KEEPALIVE_SECONDS),
            content_type='text/event-stream',
        )
        response['Cache-Control'] = 'no-cache'
        response['X-Accel-Buffering'] = 'no'
        return response


class SubscriberGroupsView(APIView):
    def get(self, request):
        return success_response(hub.groups())
