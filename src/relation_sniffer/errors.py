"""
Exception types raised while scanning entity classes for relations.

None of these terminate a scan. The sniffer catches them per entity, per
method or per edge, logs them and records them as probe failures.
"""

from __future__ import annotations

import re
from typing import Optional


class SnifferError(Exception):
    """Base class for all relation sniffer errors."""


class DiscoveryError(SnifferError):
    """An entity class could not be imported, resolved or instantiated."""


class ProbeError(SnifferError):
    """Invoking a candidate method raised an error."""

    kind = "probe"
    hint: Optional[str] = None

    def __init__(self, entity: str, method: str, message: str):
        super().__init__(message)
        self.entity = entity
        self.method = method
        self.message = message

    @classmethod
    def from_exception(cls, entity: str, method: str, exc: BaseException) -> ProbeError:
        """
        Wrap an exception raised by a probed method.

        Messages that reference a class which could not be found are wrapped
        as UnresolvedRelatedTypeError. The match is a best-effort guess.
        """
        message = str(exc) or exc.__class__.__name__
        for pattern in UNRESOLVED_PATTERNS:
            if pattern.search(message):
                return UnresolvedRelatedTypeError(entity, method, message)
        return cls(entity, method, message)


class UnresolvedRelatedTypeError(ProbeError):
    """A relation builder referenced a related class that is missing or ambiguous."""

    kind = "unresolved_related_type"
    hint = "This could be due to an incorrect relation setup"


class ProbeTimeoutError(ProbeError):
    """A probed method did not return within the configured timeout."""

    kind = "timeout"


class ExtractionError(SnifferError):
    """A confirmed relation object lacks an expected metadata accessor."""

    kind = "extraction"

    def __init__(self, entity: str, method: str, message: str):
        super().__init__(message)
        self.entity = entity
        self.method = method
        self.message = message


class WriteRefusedError(SnifferError):
    """Raised by strict write backends that refuse persistence."""


UNRESOLVED_PATTERNS = [
    re.compile(r'^Class "[^"]+" not found$'),
    re.compile(r'^Class "[^"]+" is ambiguous: .+$'),
    re.compile(r"^name '[^']+' is not defined$"),
]
