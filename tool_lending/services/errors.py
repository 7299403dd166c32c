from __future__ import annotations


class LendingError(RuntimeError):
    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RentalValidationError(LendingError):
    kind = "validation"
    status_code = 400


class NotFoundError(LendingError):
    kind = "not_found"
    status_code = 404


class ConflictError(LendingError):
    kind = "conflict"
    status_code = 409


class BlockedError(LendingError):
    kind = "blocked"
    status_code = 409


class ExpiredMembershipError(LendingError):
    kind = "expired_membership"
    status_code = 400


class ForbiddenError(LendingError):
    kind = "forbidden"
    status_code = 403


class InvalidStateError(LendingError):
    kind = "invalid_state"
    status_code = 409
