"""Database exception types."""


class DatabaseError(Exception):
    """Base class for database errors."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be loaded or applied."""
    pass


class RecordNotFoundError(DatabaseError):
    """Raised when a lookup, update or delete matches no rows."""

    def __init__(self, entity: str, record_id=None):
        self.entity = entity
        self.record_id = record_id
        if record_id is None:
            super().__init__(f"{entity} not found")
        else:
            super().__init__(f"{entity} {record_id} not found")
