"""Error taxonomy for the lead lifecycle engine."""


class LeadEngineError(Exception):
    """Base class. ``code`` is the machine-readable name surfaced by the API."""

    code = "lead_engine_error"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ValidationError(LeadEngineError):
    code = "validation_error"

    def __init__(self, reason: str, field: str | None = None):
        self.field = field
        super().__init__(reason)


class DuplicateError(LeadEngineError):
    """Not a failure: the submission was merged into an existing lead."""

    code = "duplicate"

    def __init__(self, lead_id, status: str | None = None):
        self.lead_id = lead_id
        self.status = status
        super().__init__(f"Merged into existing lead {lead_id}")


class RateLimitError(LeadEngineError):
    code = "rate_limited"

    def __init__(self, reason: str, retry_after: int):
        self.retry_after = retry_after
        super().__init__(reason)


class EnrichmentUnavailable(LeadEngineError):
    code = "enrichment_unavailable"


class ScoringTimeout(LeadEngineError):
    code = "scoring_timeout"


class ContentGenerationError(LeadEngineError):
    code = "content_generation_error"


class DeliveryError(LeadEngineError):
    code = "delivery_error"


class InvalidTransition(LeadEngineError):
    code = "invalid_transition"

    def __init__(self, current: str, target: str, reason: str | None = None):
        self.current = current
        self.target = target
        super().__init__(reason or f"Transition {current} -> {target} is not allowed")


class AlreadyConverted(LeadEngineError):
    """Idempotent success path; ``result`` carries the existing links."""

    code = "already_converted"

    def __init__(self, result):
        self.result = result
        super().__init__(f"Lead {result.lead_id} already converted")


class ConversionError(LeadEngineError):
    code = "conversion_error"


class LeadNotFound(LeadEngineError):
    code = "not_found"

    def __init__(self, lead_id):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} not found")


class ResponseNotFound(LeadNotFound):
    def __init__(self, response_id):
        self.response_id = response_id
        self.lead_id = None
        LeadEngineError.__init__(self, f"Auto-response {response_id} not found")


class ConcurrencyConflict(LeadEngineError):
    code = "concurrency_conflict"
