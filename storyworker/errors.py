"""
Error taxonomy shared by the adapters, the orchestrator and the HTTP layer.

Each error carries the HTTP status the API answers with and a short machine
code that ends up in GenerationOutcome.error_code.
"""


class StoryworkerError(Exception):
    http_status = 500
    code = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class PreconditionFailed(StoryworkerError):
    """The owner entity lacks the upstream artifact the job needs."""
    http_status = 400
    code = "precondition_failed"


class EntityNotFound(StoryworkerError):
    http_status = 404
    code = "not_found"


class ProviderRejected(StoryworkerError):
    """Provider refused the request (auth, bad payload, quota). Not retried."""
    http_status = 502
    code = "provider_rejected"

    def __init__(self, message: str = "", status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class ProviderUnavailable(StoryworkerError):
    """Transient network or 5xx error. Polling retries within its budget."""
    http_status = 502
    code = "provider_unavailable"


class GenerationTimeout(StoryworkerError):
    http_status = 504
    code = "timeout"


class UnknownJob(StoryworkerError):
    """Webhook names an external request id with no generations row."""
    http_status = 404
    code = "unknown_job"


class InvalidWebhook(StoryworkerError):
    http_status = 400
    code = "invalid_webhook"


class StoryParseError(StoryworkerError):
    """Model output could not be parsed into the expected JSON shape."""
    http_status = 502
    code = "story_parse_error"


TIMEOUT_REASON = "timeout"
SUPERSEDED_REASON = "superseded"
