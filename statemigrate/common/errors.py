"""
Error taxonomy for the migration.

Every error is fatal: the run aborts on the first one and nothing is retried.
Callers match on the exception class, never on the message text.
"""

from __future__ import annotations

from typing import Optional


class MigrationError(Exception):
    """Base class. ``address`` names the account being migrated, if known."""

    def __init__(self, message: str, address: Optional[bytes] = None) -> None:
        super().__init__(message)
        self.address = address

    def __str__(self) -> str:
        message = super().__str__()
        if self.address is not None:
            return f"{message} (address 0x{self.address.hex()})"
        return message


class MalformedInputError(MigrationError):
    """A serialized trie or node could not be decoded."""

    def __init__(
        self,
        message: str,
        offset: Optional[int] = None,
        expected: Optional[int] = None,
        available: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.offset = offset
        self.expected = expected
        self.available = available


class MissingDataError(MigrationError):
    """Something the migration requires is absent from every store."""

    def __init__(
        self,
        what: str,
        key: bytes,
        address: Optional[bytes] = None,
    ) -> None:
        super().__init__(f"Unable to find {what} 0x{key.hex()}", address)
        self.what = what
        self.key = key


class ConsistencyError(MigrationError):
    """A root hash or a value count does not match its expected value."""

    def __init__(
        self,
        message: str,
        expected: object = None,
        actual: object = None,
        address: Optional[bytes] = None,
    ) -> None:
        super().__init__(message, address)
        self.expected = expected
        self.actual = actual


def with_address(exc: MigrationError, address: bytes, context: str) -> MigrationError:
    """Re-create ``exc`` with the offending address attached.

    The returned error keeps the original class so it can still be matched by
    kind; the caller chains it with ``raise ... from exc``.
    """
    message = f"{context}: {exc.args[0] if exc.args else exc}"
    if isinstance(exc, MissingDataError):
        wrapped: MigrationError = MissingDataError(exc.what, exc.key, address)
        wrapped.args = (message,)
        return wrapped
    if isinstance(exc, ConsistencyError):
        return ConsistencyError(message, exc.expected, exc.actual, address)
    if isinstance(exc, MalformedInputError):
        wrapped = MalformedInputError(message, exc.offset, exc.expected, exc.available)
        wrapped.address = address
        return wrapped
    return MigrationError(message, address)
