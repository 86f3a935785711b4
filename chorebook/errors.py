from enum import Enum


class RecoveryAction(str, Enum):
    RETRY = "retry"
    GO_BACK = "go_back"
    REAUTHENTICATE = "reauthenticate"


class ChorebookError(Exception):
    """Base error. Every error carries a readable message and a recovery action."""

    recovery = RecoveryAction.RETRY

    def __init__(self, message: str, recovery: RecoveryAction | None = None):
        super().__init__(message)
        self.message = message
        if recovery is not None:
            self.recovery = recovery


class ValidationError(ChorebookError):
    recovery = RecoveryAction.GO_BACK


class PreconditionFailed(ChorebookError):
    recovery = RecoveryAction.GO_BACK


class OperationFailed(ChorebookError):
    """The server answered but declined the operation ({"success": false})."""


class SubmissionInProgress(ChorebookError):
    pass


class ActionInProgress(ChorebookError):
    pass


class ReauthenticationRequired(ChorebookError):
    recovery = RecoveryAction.REAUTHENTICATE


class NetworkError(ChorebookError):
    pass


class ApiError(ChorebookError):
    def __init__(self, status_code: int, message: str, recovery: RecoveryAction | None = None):
        super().__init__(message, recovery)
        self.status_code = status_code


class ConflictError(ApiError):
    recovery = RecoveryAction.GO_BACK


class AssignmentConflict(ConflictError):
    pass
