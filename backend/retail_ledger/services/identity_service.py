# Overview: Actor attribution for ledger entries and order history.

"""
Identity context.

Authentication is handled outside this service. Whoever fronts the API
(gateway, session middleware) passes the acting user's id in the
X-Actor-Id header; the with_actor decorator copies it into g.actor_id.

Outside a request (CLI, tests, background work) the configured
SYSTEM_ACTOR_ID is used.
"""

from __future__ import annotations

from flask import current_app, g, has_request_context


def current_actor_id() -> str | None:
    if has_request_context():
        actor_id = getattr(g, "actor_id", None)
        if actor_id:
            return actor_id
    return current_app.config.get("SYSTEM_ACTOR_ID")


def resolve_actor_id(actor_id: str | None = None) -> str | None:
    """Explicit actor wins; otherwise fall back to the ambient context."""
    if actor_id:
        return str(actor_id)
    return current_actor_id()
