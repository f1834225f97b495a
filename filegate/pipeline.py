"""Per-request guard chain.

Order is fixed: authenticate, authorize, count against the rate limits,
then run the view (which appends its own audit entry).
"""
from functools import wraps

from flask import current_app, g, request

from .errors import Unauthenticated
from .ledger import AssignmentLedger
from .policy import authorize


def get_session():
    return current_app.db_session()


def client_ip():
    return request.remote_addr or 'unknown'


def bearer_token():
    header = request.headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    token = token.strip()
    if scheme.lower() != 'bearer' or not token:
        return None
    return token


def authenticate():
    token = bearer_token()
    if token is None:
        raise Unauthenticated('Access token required')
    g.identity = current_app.tokens.verify(token, get_session())
    return g.identity


def throttle(*limit_names):
    ip = client_ip()
    for name in limit_names:
        current_app.rate_limiter.check(name, ip)


def record(action, target_type=None, target_id=None, metadata=None, actor_id=None):
    """Append an audit entry for the current request."""
    if actor_id is None:
        identity = g.get('identity')
        actor_id = identity.id if identity is not None else None
    current_app.audit.append(actor_id, action, target_type, target_id, client_ip(), metadata)


def guarded(operation, limit=None, file_arg=None, user_arg=None):
    """Protect a view with the full chain.

    ``file_arg``/``user_arg`` name the URL parameters carrying the target
    file or user id.
    """
    limits = ('general',) + ((limit,) if limit else ())

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            identity = authenticate()
            decision = authorize(
                identity, operation,
                file_id=kwargs.get(file_arg) if file_arg else None,
                target_user_id=kwargs.get(user_arg) if user_arg else None,
                assignments=AssignmentLedger(get_session()),
            )
            if not decision.allowed:
                current_app.logger.info('access denied', extra={
                    'user_id': identity.id, 'operation': operation.value, 'reason': decision.reason})
            decision.raise_for_denial()
            throttle(*limits)
            return view(*args, **kwargs)
        return wrapper
    return decorator


def optional_auth(view):
    """Resolve a bearer token when present; anonymous callers proceed with ``g.identity = None``."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        g.identity = current_app.tokens.verify_optional(bearer_token(), get_session())
        return view(*args, **kwargs)
    return wrapper


def rate_limited(limit):
    """Rate limit an unauthenticated view."""
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            throttle('general', limit)
            return view(*args, **kwargs)
        return wrapper
    return decorator
