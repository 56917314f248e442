from __future__ import annotations


class CommissionError(Exception):
    """Base class for errors raised by the commission engine."""


class InputValidationError(CommissionError, ValueError):
    """Malformed input rejected at ingestion."""


class InvalidProductError(InputValidationError):
    pass


class InvalidPaymentError(InputValidationError):
    pass


class InvalidRoleTableError(InputValidationError):
    pass


class UnknownProductError(InputValidationError):
    def __init__(self, product_id: str) -> None:
        super().__init__(f"Unknown product: {product_id}")
        self.product_id = product_id


class UnknownColumnError(InputValidationError):
    pass


class InvalidQueryError(InputValidationError):
    pass


class ExportDeniedError(CommissionError, PermissionError):
    def __init__(self, role: str) -> None:
        super().__init__(f"Export is not available for role '{role}'")
        self.role = role


class ReportTooLargeError(CommissionError):
    def __init__(self, row_count: int, limit: int) -> None:
        super().__init__(f"Report matched {row_count} rows, limit is {limit}; narrow the filters")
        self.row_count = row_count
        self.limit = limit
