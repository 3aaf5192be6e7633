class TaskNestError(Exception):
    """Base exception for all TaskNest errors."""
    pass

class RecoverableError(TaskNestError):
    """An error that can be recovered from without data loss."""
    pass

class FatalError(TaskNestError):
    """An error that requires application termination or major intervention."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to parent cycles in the task tree"""
    pass

class CycleError(CorruptionError):
    """A parent chain loops back on itself."""
    pass

class MigrationError(CorruptionError):
    """Data migration failed - data may be corrupted."""
    pass

class FileOperationError(RecoverableError):
    """File operation failed but can be retried."""
    pass

class StorageWriteError(FileOperationError):
    """The snapshot could not be written; in-memory state is untouched."""
    pass

class ImportFormatError(RecoverableError):
    """ Imported text is not a snapshot; stored data was left as is """
    pass
