"""
Exceptions raised by the autofill engine.

Only ConfigError is meant to reach callers (it is raised while loading
platform configs). Everything else is caught by the interpreter, the
heuristic mapper or the orchestrator and turned into a partial result.
"""


class AutofillError(Exception):
    """Base class for autofill errors."""


class ConfigError(AutofillError):
    """A platform config is structurally invalid."""


class ConfigNotFound(AutofillError):
    """No platform config applies to the page. Routes to the generic path."""


class ElementNotFound(AutofillError):
    """An element path did not resolve to a live element."""


class ActionTimeout(AutofillError):
    """A bounded wait ran out before its condition held."""


class ValueAssignmentError(AutofillError):
    """Writing a value into an element failed."""


class UpstreamAgentError(AutofillError):
    """The AI field-fill service failed or returned something unusable."""


class CacheRaceError(AutofillError):
    """A cache entry changed between read and commit."""


class RunCancelled(AutofillError):
    """The page navigated away while a run was in flight."""
