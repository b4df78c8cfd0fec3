"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ParseFailure(DomainException):
    """Input text does not look like a bank statement or yields no transactions"""

    pass


class TypeMismatch(DomainException, TypeError):
    """Analyzer received arguments of the wrong type"""

    pass


class ExternalCallFailure(DomainException):
    """A verification service timed out, errored, or did not report success"""

    def __init__(self, service: str, reason: str):
        super().__init__(f"{service}: {reason}")
        self.service = service
        self.reason = reason


class BudgetExceeded(DomainException):
    """Spend went past a budget cap despite reserve-then-call"""

    pass
