"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class InvalidSignature(DomainException):
    """Webhook payload failed signature verification"""

    pass


class MalformedEvent(DomainException):
    """Authorization event is missing fields or has the wrong shape"""

    pass


class ClassificationAmbiguous(DomainException):
    """A merchant category code matched rules in conflicting ways"""

    pass


class InvalidInstrumentConfig(DomainException):
    """Instrument mapping is malformed"""

    pass


class UnconfiguredDefault(InvalidInstrumentConfig):
    """Instrument mapping has no entry for the default category"""

    pass


class SettlementError(DomainException):
    """Settlement against the real instrument did not succeed"""

    kind = "error"
    reason = "settlement_failed"

    def __init__(self, message: str, decline_code: Optional[str] = None):
        super().__init__(message)
        self.decline_code = decline_code


class SettlementTimeout(SettlementError):
    """Settlement call did not answer in time; true outcome is unknown"""

    kind = "timeout"
    reason = "settlement_timeout"


class SettlementRejected(SettlementError):
    """Instrument issuer explicitly refused the charge"""

    kind = "rejected"
    reason = "insufficient_funds"


class SettlementUnavailable(SettlementError):
    """Settlement provider errored or returned an unusable response"""

    kind = "unavailable"
    reason = "settlement_unavailable"


class ResolutionError(DomainException):
    """Approve/decline call to the issuing network failed"""

    pass


class PersistenceError(DomainException):
    """Decision Log write or read failed"""

    pass


class DuplicateDecision(PersistenceError):
    """A decision for this authorization_id is already committed"""

    pass
