from __future__ import annotations


class ChallengeError(Exception):
    """Base for domain failures raised by the challenge engine."""

    code = "challenge_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(ChallengeError):
    code = "not_found"


class ForbiddenError(ChallengeError):
    code = "forbidden"


class ValidationError(ChallengeError):
    code = "validation_error"


class ConflictError(ChallengeError):
    code = "conflict"
