"""Exceptions raised by the settlement services."""


class SettlementError(Exception):
    """Base exception for settlement operations."""
    pass


class PropNotFoundError(SettlementError):
    """Prop does not exist."""
    pass


class PropNotOpenError(SettlementError):
    """Prop is no longer accepting takes."""
    pass


class PackNotFoundError(SettlementError):
    """Pack does not exist."""
    pass


class InvalidSideError(SettlementError):
    """Side is not A or B."""
    pass


class InvalidIdentityError(SettlementError):
    """Take has no identity to attribute it to."""
    pass


class ConcurrencyError(SettlementError):
    """Concurrent modification detected."""
    pass


class FormulaNotConfiguredError(SettlementError):
    """Prop is not set up for formula grading."""
    pass


class FormulaInputError(SettlementError):
    """Game data is missing something the formula needs."""
    pass
