# rsop.py -- Resultant Set of Policy for hvresult.
# Implements DESIGN.md Component 3.2: merges the policies bound to one identity
# into a single capability map with deny-override semantics.

from dataclasses import dataclass

from policy import DENY, Policy

# path -> capability -> names of the policies granting it
CapabilityMap = dict[str, dict[str, list[str]]]


@dataclass(frozen=True)
class ResolvedSet:
    """All policies bound to one identity, sorted by policy name."""

    policies: tuple[Policy, ...] = ()

    def __post_init__(self):
        ordered = tuple(sorted(self.policies, key=lambda p: p.name))
        object.__setattr__(self, "policies", ordered)

    @property
    def names(self) -> list[str]:
        return [p.name for p in self.policies]


def _accumulate(resolved_set: ResolvedSet) -> CapabilityMap:
    capmap: CapabilityMap = {}
    for pol in resolved_set.policies:
        for rule in pol.rules:
            if not rule.capabilities:
                continue
            caps = capmap.setdefault(rule.path, {})
            for cap in rule.capabilities:
                caps.setdefault(cap, []).append(pol.name)
    return capmap


def resolve(resolved_set: ResolvedSet) -> CapabilityMap:
    """Invert a set of policies into path -> capability -> granting policies.

    Names are appended in policy order without deduplication, so a policy
    granting the same capability twice on a path shows up twice. When a path
    carries `deny` next to anything else, only the `deny` entry is kept.

    Args:
        resolved_set: The policies bound to an identity.

    Returns:
        A new CapabilityMap. Empty for an empty set.
    """
    capmap = _accumulate(resolved_set)
    for path, caps in capmap.items():
        if len(caps) > 1 and caps.get(DENY):
            capmap[path] = {DENY: caps[DENY]}
    return capmap


def preempted(resolved_set: ResolvedSet) -> CapabilityMap:
    """Return the grants that `resolve` drops because of a deny on the same path.

    The map has the same shape as a CapabilityMap but never contains `deny`.
    """
    dropped: CapabilityMap = {}
    for path, caps in _accumulate(resolved_set).items():
        if len(caps) > 1 and caps.get(DENY):
            dropped[path] = {cap: names for cap, names in caps.items() if cap != DENY}
    return dropped
