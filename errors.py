class LedgerError(ValueError):
    """Base class for failures the API reports back to the user."""

    status_code = 400


class ValidationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    """Missing record or a record owned by someone else.

    Both cases share one message so callers cannot discover ids that belong
    to other users.
    """

    status_code = 404

    def __init__(self, entity: str) -> None:
        super().__init__(f"{entity} not found or no permission")
        self.entity = entity


class InsufficientFundsError(LedgerError):
    def __init__(self, message: str = "Insufficient balance for this expense") -> None:
        super().__init__(message)


class PersistenceError(LedgerError):
    status_code = 500
