# rsop_diff.py -- Differences between two resolved capability maps.
# Implements DESIGN.md Component 3.3: structural added/removed deltas, the
# emptiness test and the changed-grant metric.

from dataclasses import dataclass

from rsop import CapabilityMap


@dataclass(frozen=True)
class Differential:
    """The transition from a "before" capability map to an "after" one.

    An empty side is always None, so `Differential()` means "no change".
    """

    added: CapabilityMap | None = None
    removed: CapabilityMap | None = None

    def empty(self) -> bool:
        return not self.added and not self.removed

    def metrics(self) -> "DiffMetrics":
        return metrics(self)


@dataclass(frozen=True)
class DiffMetrics:
    # policy attributions added or removed, not distinct path/capability pairs
    capability_changes: int = 0


def _missing(ours: CapabilityMap, theirs: CapabilityMap) -> CapabilityMap:
    """Capabilities present in `ours` and absent from `theirs`, keyed by path."""
    missing: CapabilityMap = {}
    for path, caps in ours.items():
        if not caps:
            continue
        their_caps = theirs.get(path)
        if not their_caps:
            missing[path] = {cap: list(names) for cap, names in caps.items()}
            continue
        for cap, names in caps.items():
            if cap not in their_caps:
                missing.setdefault(path, {})[cap] = list(names)
    return missing


def diff(before: CapabilityMap | None, after: CapabilityMap | None) -> Differential:
    """Compute what `after` adds to and removes from `before`.

    Comparison is on capability keys only: a capability still granted, even by
    different policies, counts as unchanged. An empty or None `after` is the
    deletion sentinel and yields everything in `before` as removed.

    Args:
        before: The historical capability map (None means the identity did not exist).
        after: The current capability map.

    Returns:
        The Differential, with empty sides normalized to None.
    """
    before = before or {}
    if not after:
        return Differential(removed=_missing(before, {}) or None)
    added = _missing(after, before)
    removed = _missing(before, after)
    return Differential(added=added or None, removed=removed or None)


def is_empty(differential: Differential | None) -> bool:
    """Return True if there are no effective changes. None counts as empty."""
    if differential is None:
        return True
    return differential.empty()


def metrics(differential: Differential | None) -> DiffMetrics:
    """Count every granting-policy attribution in both sides of the differential."""
    if differential is None:
        return DiffMetrics()
    count = 0
    for side in (differential.added, differential.removed):
        for caps in (side or {}).values():
            for names in caps.values():
                count += len(names)
    return DiffMetrics(capability_changes=count)


def sorted_paths(differential: Differential | None) -> list[str]:
    """Every path touched by the differential in ascending lexical order."""
    if differential is None:
        return []
    paths = set(differential.added or {}) | set(differential.removed or {})
    return sorted(paths)
