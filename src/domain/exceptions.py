"""Base exception classes for the privacy core domain layer."""


class PrivacyCoreError(Exception):
    """Base exception for all domain errors.

    All domain-specific exceptions MUST inherit from this class.
    This enables consistent error handling across the application
    and a single mapping point to HTTP problem responses.

    Attributes:
        problem_type: URN identifying the problem kind (RFC 7807 ``type``).
        title: Short human-readable summary of the problem kind.
        http_status: Status code used when surfaced through the API.
        retryable: Whether the caller may safely retry the request.
    """

    problem_type: str = "urn:privacy-core:error"
    title: str = "Privacy Core Error"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str = "") -> None:
        """Initialize the exception with an optional message.

        Args:
            message: Human-readable error description.
        """
        super().__init__(message)

    def to_problem_dict(self) -> dict:
        """Serialize to an RFC 7807 problem body.

        Returns:
            Dictionary with ``type``, ``title``, ``status``, ``detail`` and
            ``retryable`` keys.
        """
        return {
            "type": self.problem_type,
            "title": self.title,
            "status": self.http_status,
            "detail": str(self),
            "retryable": self.retryable,
        }
