# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g

ACTOR_HEADER = "X-Actor-Id"
MAX_ACTOR_ID_LENGTH = 64


def with_actor(f):
    """
    Establish the acting user for the request.

    Authentication happens upstream; the caller's id arrives in the
    X-Actor-Id header and is stored as g.actor_id. Ledger entries, order
    history and orders created during the request are attributed to it.
    A missing header leaves g.actor_id unset (system actor).
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if len(actor_id) > MAX_ACTOR_ID_LENGTH:
            return {"error": f"{ACTOR_HEADER} exceeds max length {MAX_ACTOR_ID_LENGTH}"}, 400
        g.actor_id = actor_id or None
        return f(*args, **kwargs)

    return decorated_function
