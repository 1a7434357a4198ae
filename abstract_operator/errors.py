"""Exceptions raised by the operator engine."""


class OperatorError(Exception):
    """Base class for operator engine errors."""


class CrdCreationError(OperatorError):
    """A CustomResourceDefinition could not be created, even without schema."""

    def __init__(self, name: str, cause: Exception) -> None:
        super().__init__(f"Unable to create CustomResourceDefinition {name}: {cause}")
        self.name = name
        self.cause = cause


class WatchEstablishmentError(OperatorError):
    """The initial watch subscription of an operator failed."""

    def __init__(self, operator_name: str, namespace: str, cause: Exception) -> None:
        super().__init__(f"{operator_name} startup failed for namespace {namespace}: {cause}")
        self.operator_name = operator_name
        self.namespace = namespace
        self.cause = cause


class StreamEndedError(OperatorError):
    """The API server ended a watch stream the operator did not close."""
