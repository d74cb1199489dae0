"""
Helpers for building event context from an HTTP request.
"""
from apps.core.middleware import get_client_ip, get_user_agent
from apps.events.types import EventArea, EventContext


def context_from_request(request, area=EventArea.ADMIN, actor=None) -> EventContext:
    """
    Build an EventContext carrying the acting user, correlation id and
    client metadata of ``request``.

    ``actor`` overrides the request user (login runs before the request is
    authenticated).
    """
    if actor is None:
        user = getattr(request, 'user', None)
        actor = user if getattr(user, 'is_authenticated', False) else None

    return EventContext(
        user_id=str(actor.id) if actor is not None else None,
        request_id=getattr(request, 'request_id', None),
        area=area,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request) or None,
    )


def system_context(request_id=None) -> EventContext:
    """Context for events raised by scheduled jobs and management commands."""
    return EventContext(area=EventArea.SYSTEM, request_id=request_id)
