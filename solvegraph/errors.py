"""Error taxonomy shared by every component.

Each class carries the HTTP status the outer boundary renders and a message
that is safe to show to an end user. The full detail stays in the exception
message and is only logged.
"""


class SolvegraphError(Exception):
    status_code = 500
    public_message = "Internal server error"
    category = "internal"

    def __init__(self, message: str = "", public_message: str = None):
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class AuthenticationError(SolvegraphError):
    """Missing/invalid session or a bad job signature. No side effects."""
    status_code = 401
    public_message = "Unauthenticated"
    category = "authentication"


class ValidationError(SolvegraphError):
    """Malformed request or job payload. No side effects."""
    status_code = 400
    public_message = "Invalid payload structure."
    category = "validation"


class ForbiddenError(SolvegraphError):
    """Authenticated, but the identity lacks the required role."""
    status_code = 403
    public_message = "Forbidden"
    category = "authorization"


class NotFoundError(SolvegraphError):
    status_code = 404
    public_message = "Not found"
    category = "not_found"


class UpstreamError(SolvegraphError):
    status_code = 502
    public_message = "The language model service failed. Please try again."
    category = "upstream"


class UpstreamTransientError(UpstreamError):
    """Model temporarily unavailable or overloaded. Retried with a bounded policy."""
    status_code = 503
    public_message = "The language model service is busy. Please try again shortly."
    category = "upstream_transient"


class UpstreamPermanentError(UpstreamError):
    """Bad request, auth or quota failure at the model. Never retried."""
    category = "upstream_permanent"


class StoreWriteError(SolvegraphError):
    """Relational or graph write failed. Prior committed steps are kept."""
    status_code = 500
    public_message = "Failed to save data."
    category = "store_write"


class PublishError(SolvegraphError):
    """Queue hand-off failed after the relational write committed."""
    status_code = 500
    public_message = "Failed to schedule background processing."
    category = "publish"


class GraphProjectionError(SolvegraphError):
    """A graph job could not be projected (embedding or graph write). The queue redelivers."""
    status_code = 500
    public_message = "Failed to update the knowledge graph."
    category = "graph_projection"

    def __init__(self, message: str = "", public_message: str = None, cause_category: str = None):
        super().__init__(message, public_message)
        self.cause_category = cause_category
