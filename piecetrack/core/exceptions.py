"""
Production-workflow exception hierarchy.

Services raise these canonical types and never return error tuples;
blueprints register one handler per type and map it to an HTTP status.

Usage:
    from piecetrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ProductionWorkflow", resource_id=42)
    raise ValidationError("Unknown priority", details={"priority": "must be one of ..."})
"""


class NotFoundError(Exception):
    """Raised when a workflow, stage, task or issue id does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "ProductionStage").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Examples: unknown stage id, duplicate active workflow for a piece mark,
    a stage move onto the current stage.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a status move is not an edge of the state machine.

    Always raised for any move out of a terminal status (completed,
    cancelled). Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id, current: str, requested: str,
                 reason: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.requested = requested
        self.reason = reason
        msg = f"Cannot move {resource} {resource_id} from '{current}' to '{requested}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConcurrencyConflictError(Exception):
    """Raised when a writer lost the per-workflow optimistic version race.

    The caller should re-read the workflow and decide whether to retry.
    Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id, expected_version: int | None = None,
                 actual_version: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"{resource} {resource_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version}"
            if actual_version is not None:
                msg += f", found {actual_version}"
            msg += ")"
        super().__init__(msg)
