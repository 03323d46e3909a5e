"""Per-turn failures of the intake flow. None of them is fatal to the process."""


class IntakeError(Exception):
    """Base class for recoverable intake errors."""


class OutOfScopeInput(IntakeError):
    """The message is not about personal or business finance."""


class AmbiguousValue(IntakeError):
    """An amount or date could not be converted deterministically."""

    def __init__(self, field: str, question: str):
        super().__init__(f"ambiguous {field}")
        self.field = field
        self.question = question


class UnresolvedField(IntakeError):
    """A field stayed unparseable after one clarification attempt."""

    def __init__(self, field: str):
        super().__init__(f"unresolved {field}")
        self.field = field


class PersistenceFailure(IntakeError):
    """The gateway rejected or did not answer a save. Always retryable."""


class GuardViolation(IntakeError):
    """A candidate action was rejected by the guard policy."""

    def __init__(self, decision):
        super().__init__(decision.reason or "guard violation")
        self.decision = decision
