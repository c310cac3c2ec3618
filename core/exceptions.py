class StorefrontError(Exception):
    """Base class for errors raised by the publishing core."""


class ValidationError(StorefrontError):
    """Malformed or missing input. Fatal to the operation that received it."""

    def __init__(self, message: str, fields: list[str] | None = None):
        super().__init__(message)
        self.fields = fields or []


class ConflictError(StorefrontError):
    """Domain, subdomain, directory or lock collision."""

    def __init__(self, message: str, value: str | None = None):
        super().__init__(message)
        self.value = value


class NotFoundError(StorefrontError):
    """Store, product or template absent. Resolved by a fallback response."""


class SecurityViolation(StorefrontError):
    """Tampering signature found in merchant-supplied JSON."""


class DegradedInput(StorefrontError):
    """Malformed but benign input, recovered locally with defaults."""
