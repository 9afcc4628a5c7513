"""
Party References Module

Tasks point at customers and staff by opaque id only. Display data (names,
emails) lives in an external directory and is resolved at the presentation
boundary, never stored on the task.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .errors import ValidationError


@dataclass(frozen=True)
class Reference:
    """Unresolved pointer to a party"""
    id: str

    def to_snapshot(self) -> str:
        return self.id


@dataclass(frozen=True)
class Resolved:
    """Party reference with display data attached by the directory"""
    id: str
    display: Dict[str, Any]

    def to_snapshot(self) -> str:
        return self.id


PartyRef = Union[Reference, Resolved]


def as_reference(value: Any, field_name: str = "reference") -> Reference:
    """
    Normalize any accepted party input to a Reference

    Accepts a Reference, a Resolved, a non-blank string id, or a mapping
    with an ``id`` key (the shape older clients send for populated parties).

    Raises:
        ValidationError: If no id can be extracted
    """
    if isinstance(value, Reference):
        return value
    if isinstance(value, Resolved):
        return Reference(value.id)
    if isinstance(value, dict):
        value = value.get('id') or value.get('_id')
    if isinstance(value, str) and value.strip():
        return Reference(value.strip())
    raise ValidationError(f"{field_name} must be a non-empty id",
                          errors=[{'field': field_name}])


class DirectoryResolver(ABC):
    """Identity/Directory boundary: looks up display data for party ids"""

    @abstractmethod
    def lookup(self, party_id: str) -> Optional[Dict[str, Any]]:
        """Return display data for the party, or None if unknown"""
        pass

    def resolve(self, reference: PartyRef) -> PartyRef:
        """Resolve a reference; unknown ids stay unresolved"""
        if reference is None or isinstance(reference, Resolved):
            return reference
        display = self.lookup(reference.id)
        if display is None:
            return reference
        return Resolved(reference.id, display)


class InMemoryDirectory(DirectoryResolver):
    """Dictionary-backed directory for testing"""

    def __init__(self, entries: Optional[Dict[str, Dict[str, Any]]] = None):
        self._entries = dict(entries or {})

    def add(self, party_id: str, **display) -> None:
        self._entries[party_id] = display

    def lookup(self, party_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(party_id)
        return dict(entry) if entry is not None else None


def resolve_parties(task, directory: DirectoryResolver) -> Dict[str, PartyRef]:
    """Resolve the customer and staff references of a task for display"""
    return {
        'customer': directory.resolve(task.customer),
        'assigned_to': directory.resolve(task.assigned_to),
        'assigned_by': directory.resolve(task.assigned_by),
    }
