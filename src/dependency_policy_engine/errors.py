"""Exception taxonomy for the dependency policy engine.

- PolicyValidationError: structural problems in a policy, rule, condition or
  action. Raised synchronously on create/update, never during evaluation.
- NotFoundError: an administrative lookup referenced an unknown resource.
- ActionConfigurationError: an enforcement action cannot run with its config.
  Caught per action by the ActionExecutor and recorded as FAILED.
- ScheduleAlreadyRunningError: an overlapping run of the same schedule.
"""


class PolicyEngineError(Exception):
    """Base class for all engine errors."""


class PolicyValidationError(PolicyEngineError):
    """A policy or one of its parts is structurally invalid.

    Args:
        message: Human-readable description of the problem.
        field: Optional name of the offending field.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(PolicyEngineError):
    """A requested resource does not exist.

    Args:
        resource: Resource kind, e.g. "Policy".
        resource_id: Identifier that was looked up.
    """

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} not found: {resource_id}")
        self.resource = resource
        self.resource_id = resource_id


class ActionConfigurationError(PolicyEngineError):
    """An enforcement action is missing required configuration."""


class ScheduleAlreadyRunningError(PolicyEngineError):
    """A scheduled evaluation is already in progress for this schedule id."""

    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule {schedule_id} is already running")
        self.schedule_id = schedule_id
