"""
Error types for the querykit query layer.

Build-time errors (QueryBuildError and subclasses) are raised before a
Query exists, so they never reach the store. Execution-time errors are
raised by the executor or the store and carry no partial results.
"""


class QueryError(Exception):
    """Base class for all query layer errors."""
    pass


class QueryBuildError(QueryError):
    """A query could not be constructed."""
    pass


class FieldMismatchError(QueryBuildError):
    """A referenced field or relation is not in the query's scope."""
    pass


class CapabilityError(QueryBuildError):
    """An operator was applied to a field that does not support it."""

    def __init__(self, field: str, operation: str, required: str):
        self.field = field
        self.operation = operation
        self.required = required
        super().__init__(
            f"Cannot apply '{operation}' to {field}: field is not {required}"
        )


class InvalidQueryError(QueryBuildError):
    """The query is structurally invalid (pagination, grouping, root)."""
    pass


class NonUniqueResultError(QueryError):
    """fetch_one matched more than one row."""
    pass


class ExecutionError(QueryError):
    """The store failed to execute a statement."""
    pass
