"""Store-level errors raised by repositories."""

from __future__ import annotations


class StoreConflict(Exception):
    """A concurrent writer won a race; the transaction may be retried."""
