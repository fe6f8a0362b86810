"""Reconciliation: compare resolved manifests with what the index holds."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from idx.db.models import FAILED, FETCHED, PENDING, Package, PackageCoordinate
from idx.manifests import Resolution


@dataclass
class ReconcilePlan:
    """The difference between current manifests and the stored index.

    Attributes:
        added: Resolved, never stored.
        changed: ``(old, new)`` pairs where a stored version was replaced by
            another version of the same ``(registry, name)``.
        removed: Stored, no longer resolved, no replacement (prune candidates).
        incomplete: Resolved and stored but ``pending`` or ``fetched``.
        failed: Resolved and stored as ``failed``; reported only.
        unchanged: Everything else that is both resolved and stored.
    """

    added: list[PackageCoordinate] = field(default_factory=list)
    changed: list[tuple[PackageCoordinate, PackageCoordinate]] = field(default_factory=list)
    removed: list[PackageCoordinate] = field(default_factory=list)
    incomplete: list[PackageCoordinate] = field(default_factory=list)
    failed: list[PackageCoordinate] = field(default_factory=list)
    unchanged: list[PackageCoordinate] = field(default_factory=list)

    @property
    def to_index(self) -> list[PackageCoordinate]:
        """What ``update`` indexes: added, the new side of changed, incomplete."""
        return sorted({*self.added, *(new for _, new in self.changed), *self.incomplete})

    @property
    def to_remove(self) -> list[PackageCoordinate]:
        """What ``update`` removes: the old side of changed."""
        return sorted({old for old, _ in self.changed})

    @property
    def in_sync(self) -> bool:
        return not (self.added or self.changed or self.removed or self.incomplete or self.failed)


def diff(
    current: Resolution | Iterable[PackageCoordinate], stored: Iterable[Package]
) -> ReconcilePlan:
    """Compute the reconcile plan. Pure: touches neither disk nor database.

    A stored coordinate that is no longer resolved is ``changed`` when the
    same ``(registry, name)`` is resolved at a version that is not stored
    yet; each new version pairs with at most one old one, lowest first.
    """
    coords = set(current.coordinates if isinstance(current, Resolution) else current)
    by_coord = {p.coordinate: p for p in stored}
    plan = ReconcilePlan()

    new_versions: dict[tuple[str, str], list[PackageCoordinate]] = defaultdict(list)
    for coord in sorted(coords):
        package = by_coord.get(coord)
        if package is None:
            new_versions[coord.key].append(coord)
        elif package.status in (PENDING, FETCHED):
            plan.incomplete.append(coord)
        elif package.status == FAILED:
            plan.failed.append(coord)
        else:
            plan.unchanged.append(coord)

    for coord in sorted(set(by_coord) - coords):
        candidates = new_versions.get(coord.key)
        if candidates:
            new = candidates.pop(0)
            plan.changed.append((coord, new))
        else:
            plan.removed.append(coord)

    # versions consumed as replacements above are reported under changed only
    plan.added = sorted(c for versions in new_versions.values() for c in versions)
    return plan
