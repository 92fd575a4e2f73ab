"""Exceptions raised by the draft lifecycle engine and its collaborators."""


class DraftServiceError(Exception):
    """Base exception for draft operations."""

    def __init__(self, message: str, status_code: int = 500, error_code: str = "draft_service_error"):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class NotFoundError(DraftServiceError):
    """Raised when a draft, deal, email or version does not exist."""

    def __init__(self, message: str = "Not found"):
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found"
        )


class InvalidStateError(DraftServiceError):
    """Raised when the draft's status forbids the requested operation."""

    def __init__(self, message: str = "Operation not allowed in the draft's current state"):
        super().__init__(
            message=message,
            status_code=409,
            error_code="invalid_state"
        )


class QuotaExceededError(DraftServiceError):
    """Raised when free regenerations are used up and the cooldown has not elapsed."""

    def __init__(self, hours_remaining: int, message: str | None = None):
        self.hours_remaining = hours_remaining
        unit = "hour" if hours_remaining == 1 else "hours"
        super().__init__(
            message=message or (
                f"Regeneration limit reached. Try again in {hours_remaining} {unit}. "
                "You can still manually edit the draft."
            ),
            status_code=429,
            error_code="regeneration_quota_exceeded"
        )


class GenerationFailedError(DraftServiceError):
    """Raised when the language model errors or returns no text."""

    def __init__(self, message: str = "Failed to generate email draft"):
        super().__init__(
            message=message,
            status_code=502,
            error_code="generation_failed"
        )


class SendFailedError(DraftServiceError):
    """Raised when the email provider rejected the message or retries ran out."""

    def __init__(self, message: str = "Failed to send email"):
        super().__init__(
            message=message,
            status_code=502,
            error_code="send_failed"
        )


class ValidationInputError(DraftServiceError):
    """Raised when caller input is out of bounds (body/instruction length, missing confirmation)."""

    def __init__(self, message: str = "Invalid input"):
        super().__init__(
            message=message,
            status_code=422,
            error_code="invalid_input"
        )
