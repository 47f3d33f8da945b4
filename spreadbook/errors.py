"""Exception types.

Only the import boundary turns these into a result; mutators never raise.
"""

from __future__ import annotations


class SpreadbookError(Exception):
    """Base class for spreadbook errors."""


class ImportValidationError(SpreadbookError):
    """Import payload is structurally unusable (not an object, bad JSON)."""


class RecordDecodeError(SpreadbookError):
    """Persisted store record could not be decoded."""


class StorageError(SpreadbookError):
    """Key-value backend failed to read or write."""
