"""Exception hierarchy shared across the engine."""


class VarflowError(Exception):
    pass


class ConfigError(VarflowError):
    pass


class EvaluationError(VarflowError):
    """An expression raised or could not complete."""


class UnknownVariable(EvaluationError):
    """A mutation primitive or placeholder named an undeclared variable."""

    def __init__(self, name: str, scope_id: str | None = None):
        where = f" in scope {scope_id!r}" if scope_id else ""
        super().__init__(f"unknown variable: {name}{where}")
        self.name = name
        self.scope_id = scope_id


class IntegrationError(EvaluationError):
    """An integration operation raised. The original error is the __cause__."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
