"""
Service-layer exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from casetrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="TestScenario", resource_id=42)
    raise ValidationError("Related step does not belong to scenario",
                          details={"relatedStepId": "..."})
"""


class NotFoundError(Exception):
    """Raised when a referenced Step/Scenario/Package/Bug/User does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "TestScenario", "Bug").
        resource_id: The PK that was looked up.
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

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (e.g. invalid package transition, step from another scenario).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConcurrencyError(Exception):
    """Raised when a versioned row changed between read and write.

    The whole unit of work has been rolled back when this is raised; the
    caller may resubmit. Maps to HTTP 409.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " was modified concurrently"
        super().__init__(msg)
