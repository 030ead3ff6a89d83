# ==========================================================
#                  EXCEPTIONS
# ==========================================================
class CommissionError(Exception):
    """Base commission engine exception"""
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(CommissionError):
    status_code = 400


class NotFoundError(CommissionError):
    status_code = 404


class InsufficientBalanceError(CommissionError):
    status_code = 400


class InvalidTransitionError(CommissionError):
    status_code = 409
