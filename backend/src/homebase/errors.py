"""Domain errors raised by the referral core."""


class HomeBaseError(Exception):
    """Base class for referral core errors."""
    pass


class NotFound(HomeBaseError):
    """Referenced account, relationship or payout does not exist."""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvariantViolation(HomeBaseError):
    """A write would break a ledger invariant (duplicate payout, negative counter, ...)."""
    pass


class TransferFailure(HomeBaseError):
    """The payout transfer collaborator reported a failure."""

    def __init__(self, message: str, reference: str | None = None):
        self.reference = reference
        super().__init__(message)


class FraudFlag(HomeBaseError):
    """The relationship has been voided and accepts no further transitions."""

    def __init__(self, relationship_id: int, reason: str | None = None):
        self.relationship_id = relationship_id
        self.reason = reason
        super().__init__(f"Referral relationship {relationship_id} is voided")
