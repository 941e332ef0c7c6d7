"""Domain exceptions.  The API layer maps each to an HTTP status."""


class DriveHireError(Exception):
    """Base class for all expected, typed failures."""


class InvalidRequest(DriveHireError):
    """Missing or malformed geometry / required fields."""


class InsufficientBalance(DriveHireError):
    """Requester's wallet cannot fund a new ride."""


class NotEligible(DriveHireError):
    """Driver (or actor) is not allowed to perform this action."""


class OrderNotFound(DriveHireError):
    """No ride order with the given id."""


class Conflict(DriveHireError):
    """Transition attempted against a status that no longer permits it."""


class RideNoLongerAvailable(Conflict):
    """Another driver already accepted, or the order was cancelled."""


class PartialSettlementFailure(DriveHireError):
    """A wallet mutation failed during settlement; the transaction is rolled back."""
