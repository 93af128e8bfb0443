class RentalError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(RentalError):
    status_code = 404


class InvalidInput(RentalError):
    status_code = 400


class Forbidden(RentalError):
    status_code = 403


class Conflict(RentalError):
    status_code = 409


class StoreFailure(RentalError):
    """Persistence failed; the caller may retry."""

    status_code = 503


class LedgerFailure(StoreFailure):
    """
    Points bookkeeping failed. Never surfaced to end users: the ledger
    boundary logs it and reports it through ``LedgerOutcome``.
    """
