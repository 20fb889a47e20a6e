# Overview: Fire-and-forget notification sink for checkout and order events.

"""
Notification sink.

The orchestrator and the state machine report outcomes here (the UI shows
them as toasts). Delivery is not part of any transactional contract:
notify() is called after commit/rollback and a failing sink is logged and
skipped, never raised to the caller.

Sinks are callables registered per app:
    sink(event: str, message: str, level: str, context: dict) -> None
"""

from __future__ import annotations

import logging

from flask import current_app

_EXTENSION_KEY = "retail_ledger.notification_sinks"

LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def log_sink(event: str, message: str, level: str, context: dict) -> None:
    """Default sink: write to the Flask app logger."""
    current_app.logger.log(
        LEVELS.get(level, logging.INFO),
        "[%s] %s %s",
        event,
        message,
        context or "",
    )


def init_app(app) -> None:
    app.extensions.setdefault(_EXTENSION_KEY, [log_sink])


def get_sinks() -> list:
    return current_app.extensions.setdefault(_EXTENSION_KEY, [log_sink])


def register_sink(sink) -> None:
    sinks = get_sinks()
    if sink not in sinks:
        sinks.append(sink)


def unregister_sink(sink) -> None:
    sinks = get_sinks()
    if sink in sinks:
        sinks.remove(sink)


def notify(event: str, message: str, level: str = "info", **context) -> None:
    for sink in list(get_sinks()):
        try:
            sink(event, message, level, context)
        except Exception:
            current_app.logger.exception("Notification sink %r failed for %s", sink, event)
