"""Three-state result for table lookups (resolved / unresolved / empty)."""

from dataclasses import dataclass
from typing import Optional


class LookupStatus:
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"   # key not present in the table
    EMPTY = "empty"             # key present, value missing or blank


@dataclass(frozen=True)
class Lookup:
    """Outcome of looking a key up in one of the identifier tables.

    >>> Lookup.resolved("A1").value_or("raw")
    'A1'
    >>> Lookup.empty().value_or("raw")
    'raw'
    """
    status: str
    value: Optional[str] = None

    @classmethod
    def resolved(cls, value: str) -> "Lookup":
        return cls(LookupStatus.RESOLVED, value)

    @classmethod
    def unresolved(cls) -> "Lookup":
        return cls(LookupStatus.UNRESOLVED)

    @classmethod
    def empty(cls) -> "Lookup":
        return cls(LookupStatus.EMPTY)

    @property
    def is_resolved(self) -> bool:
        return self.status == LookupStatus.RESOLVED

    def value_or(self, default: str) -> str:
        return self.value if self.is_resolved else default


def lookup_value(mapping: dict, key: str) -> Lookup:
    """Look ``key`` up in a str → Optional[str] mapping built by the table loaders."""
    if key not in mapping:
        return Lookup.unresolved()
    value = mapping[key]
    if value is None or value == "":
        return Lookup.empty()
    return Lookup.resolved(value)
