"""Bus listener that mirrors telemetry events into the standard logger."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

logger = logging.getLogger("autobackend.events")


def _progress(event: Any) -> str:
    return f"{event.source}: {event.completed}/{event.total}"


_FORMATTERS: Dict[str, Callable[[Any], str]] = {
    "phaseStart": lambda e: f"phase {e.phase} started (step {e.step})",
    "phaseComplete": lambda e: f"phase {e.phase} completed (step {e.step}, {e.elapsed:.1f}s)",
    "phaseFailure": lambda e: f"phase {e.phase} failed: {e.cause}",
    "progress": _progress,
    "vendorTimeout": lambda e: f"{e.source}: vendor timeout after {e.timeout}s (attempt {e.attempt})",
    "vendorRetry": lambda e: f"{e.source}: retrying after {e.error_type} (attempt {e.attempt})",
    "jsonParseError": lambda e: f"{e.source}: malformed arguments for {e.function_name or '?'}: {e.error}",
    "jsonValidateError": lambda e: f"{e.source}: {len(e.errors)} validation error(s) in {e.function_name}",
    "consentFunctionCall": lambda e: f"{e.source}: consent {'granted' if e.result and e.result.get('type') == 'consent' else 'not applicable'}",
    "compileValidate": lambda e: f"{e.source}: compile {e.result} on attempt {e.attempt} ({len(e.diagnostics)} diagnostic(s))",
    "correct": lambda e: f"{e.source}: repair {e.attempt} for {', '.join(e.files) or 'artifact'}",
    "correctFailure": lambda e: f"{e.source}: correction gave up after {e.attempts} repair(s) ({e.reason})",
    "testScenario": lambda e: f"planned {len(e.scenarios)} test scenario(s)",
    "testScenariosReview": lambda e: f"reviewed scenarios {e.completed}/{e.total}",
    "reviewFallback": lambda e: f"{e.source}: kept {e.groups} original group(s): {e.reason}",
    "unitFailure": lambda e: f"{e.source}: unit {e.unit} failed: {e.error}",
    "cancelled": lambda e: f"cancelled during {e.source or 'pipeline'}",
}

_WARNINGS = {"phaseFailure", "jsonParseError", "jsonValidateError", "correctFailure", "reviewFallback", "unitFailure", "vendorTimeout", "vendorRetry"}
_DEBUG = {"vendorRequest", "vendorResponse", "assistantMessage", "progress"}


class LoggingListener:
    """Subscribe with ``bus.subscribe("*", LoggingListener())``."""

    def __init__(self, log: logging.Logger = logger) -> None:
        self.log = log

    def __call__(self, event: Any) -> None:
        event_type = getattr(event, "type", event.__class__.__name__)
        formatter = _FORMATTERS.get(event_type)
        message = formatter(event) if formatter else f"{event_type} event"
        if event_type in _WARNINGS:
            self.log.warning(message)
        elif event_type in _DEBUG:
            self.log.debug(message)
        else:
            self.log.info(message)


__all__ = ["LoggingListener"]
