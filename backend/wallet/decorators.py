# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g


ACTOR_HEADER = "X-Authorized-By"
DEFAULT_ACTOR = "System"


def current_actor() -> str:
    return getattr(g, "actor_name", DEFAULT_ACTOR)


def with_actor(f):
    """
    Establish who is performing the request.

    Sets g.actor_name from, in order:
    - the X-Authorized-By header
    - the JSON body's employee_name
    - "System"

    The value is only used for attribution in audit entries; credential
    checks happen at /api/people/login.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()

        if not actor and request.is_json:
            body = request.get_json(silent=True) or {}
            if isinstance(body, dict):
                actor = str(body.get("employee_name") or "").strip()

        g.actor_name = actor or DEFAULT_ACTOR
        return f(*args, **kwargs)

    return decorated_function
