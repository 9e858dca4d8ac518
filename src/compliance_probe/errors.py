# errors.py
# Failure taxonomy for the probe engine.
#
# Scope of each error:
#   LaunchError        — one command unit (fail score, logged)
#   EvaluationError    — one rule's contribution (verdict already set stands)
#   ExtractionError    — remaining gathers of one Exec
#   ConfigurationError — the whole run, raised before anything executes

from compliance_probe.models import ExecutionResult


class ProbeError(Exception):
    """Base class. Carries the ExecutionResult when the process actually ran."""

    def __init__(self, message: str, result: ExecutionResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class LaunchError(ProbeError):
    """Raised when a command unit's process could not start or timed out."""


class EvaluationError(ProbeError):
    """Raised on a malformed regex or a dynamic function fault."""


class ExtractionError(ProbeError):
    """Raised when a gather spec fails to extract its value."""

    def __init__(self, key: str, message: str, result: ExecutionResult | None = None) -> None:
        super().__init__(f"gather error for key {key}: {message}", result)
        self.key = key


class ConfigurationError(Exception):
    """Raised when a playbook is invalid. Always fatal, always pre-execution."""


class PlaybookLoadError(ConfigurationError):
    """Raised when a playbook file cannot be read, parsed or validated."""
