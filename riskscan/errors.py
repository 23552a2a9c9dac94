from __future__ import annotations

from typing import Iterable, List


class RiskscanError(Exception):
    """Base class for errors raised by the scanner core."""


class ConfigurationError(RiskscanError):
    def __init__(self, errors: Iterable[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid configuration")


class ScanCancelled(RiskscanError):
    """Raised inside a phase when the caller cancelled the scan."""
