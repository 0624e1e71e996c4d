"""
Change detection between two snapshots of the saved query cache, and between
two sets of notification recipients.
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Mapping, Sequence, Tuple, TypeVar

from .models import EMPTY, SavedQuerySpecAndConfig

Change = Tuple[SavedQuerySpecAndConfig, SavedQuerySpecAndConfig]

T = TypeVar("T")


@dataclass
class SavedQueryDiff:
    """(old, new) value pairs per kind of change.

    For deletions the new value is ``EMPTY``; for creations the old value is.
    """
    deleted: List[Change] = field(default_factory=list)
    updated: List[Change] = field(default_factory=list)
    created: List[Change] = field(default_factory=list)

    def changes(self) -> Iterator[Change]:
        yield from self.deleted
        yield from self.created
        yield from self.updated

    def __bool__(self) -> bool:
        return bool(self.deleted or self.updated or self.created)


def diff_saved_queries(
    old: Mapping[str, SavedQuerySpecAndConfig],
    new: Mapping[str, SavedQuerySpecAndConfig],
) -> SavedQueryDiff:
    """
    Compare two snapshots keyed by identity.

    A saved query present in both snapshots is reported as updated only when
    its configuration payload differs; identical configs produce nothing.
    """
    diff = SavedQueryDiff()

    for key, old_value in old.items():
        if key not in new:
            diff.deleted.append((old_value, EMPTY))

    for key, new_value in new.items():
        old_value = old.get(key)
        if old_value is None:
            diff.created.append((EMPTY, new_value))
        elif old_value.config != new_value.config:
            diff.updated.append((old_value, new_value))

    return diff


def diff_recipients(old: Iterable[T], new: Iterable[T]) -> Tuple[List[T], List[T]]:
    """Return (removed, added): members of old missing from new and vice versa.

    Membership uses the elements' own equality, which for recipients is their
    identity rather than their channel flags.
    """
    old_list: Sequence[T] = list(old)
    new_list: Sequence[T] = list(new)
    old_set = set(old_list)
    new_set = set(new_list)
    removed = [r for r in old_list if r not in new_set]
    added = [r for r in new_list if r not in old_set]
    return removed, added
