"""
Exceptions raised by the bulk import pipeline.

Row-level validation problems are never raised; they travel as strings on
``RowValidationResult.errors``. Only file, request and infrastructure level
failures use exceptions.
"""


class BulkImportError(Exception):
    """Base exception for bulk import failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class FileParseError(BulkImportError):
    """A single file could not be parsed. Returned as data by ``parse_files``."""

    def __init__(self, file_name: str, message: str):
        self.file_name = file_name
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.file_name}: {self.message}"


class ImportCancelledError(BulkImportError):
    """Raised when a run observes its cancellation token."""

    def __init__(self, message: str = None):
        super().__init__(message or "Import was cancelled")


class UnknownTableTypeError(BulkImportError, ValueError):
    """Raised when a table-type tag is not registered."""

    def __init__(self, table_type: str, known_types=None):
        self.table_type = table_type
        self.known_types = list(known_types or [])
        message = f"Unknown table type '{table_type}'"
        if self.known_types:
            message += f". Supported types: {', '.join(self.known_types)}"
        super().__init__(message)


class PersistenceInfrastructureError(BulkImportError):
    """The store failed for a reason unrelated to the submitted data."""

    def __init__(self, message: str, original: Exception = None):
        self.original = original
        super().__init__(message)
