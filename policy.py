# policy.py -- Policy documents for hvresult.
# Implements DESIGN.md Component 3.1: capability vocabulary, path rules and
# parsing of Vault policy documents (HCL or JSON) into sorted Policy objects.

import json
import logging
from dataclasses import dataclass, field

import hcl2

logger = logging.getLogger(__name__)

# Display order only. Unknown capabilities are kept and sort after these.
CAPABILITIES: list[str] = [
    "create",
    "read",
    "update",
    "delete",
    "list",
    "sudo",
    "deny",
    "subscribe",
]

DENY = "deny"


class ParseError(ValueError):
    """Raised when a policy or identity binding document is malformed."""
    pass


@dataclass(frozen=True)
class PathRule:
    """A single `path "..." { ... }` block of a policy.

    Keys other than `capabilities` (allowed_parameters, min_wrapping_ttl, ...)
    are kept in `other` untouched.
    """

    path: str
    capabilities: tuple[str, ...]
    other: dict = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Policy:
    """A named policy. The name comes from the loader, not the document."""

    name: str
    rules: tuple[PathRule, ...] = ()


def validate_capabilities(capabilities: list[str]) -> str | None:
    """Return the first capability outside CAPABILITIES, or None if all are known.

    Args:
        capabilities: List of capability strings to check.

    Returns:
        The first unknown capability string, or None if all are known.
    """
    for cap in capabilities:
        if cap not in CAPABILITIES:
            return cap
    return None


def capability_sort_key(capability: str) -> tuple[int, str]:
    """Sort key placing capabilities in display order, unknown ones last."""
    try:
        return (CAPABILITIES.index(capability), capability)
    except ValueError:
        return (len(CAPABILITIES), capability)


def sorted_capabilities(capabilities) -> list[str]:
    return sorted(capabilities, key=capability_sort_key)


def _unquote(value):
    # newer python-hcl2 releases keep the surrounding quotes of string literals
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _decode(raw: str, name: str) -> dict:
    """Decode raw policy text into a plain dict, trying JSON first."""
    if raw.lstrip().startswith("{"):
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"error parsing policy '{name}' as JSON: {e}") from e
    else:
        try:
            document = hcl2.loads(raw)
        except Exception as e:
            raise ParseError(f"error parsing policy '{name}' as HCL: {e}") from e
    if not isinstance(document, dict):
        raise ParseError(f"policy '{name}' is not an object")
    return document


def _path_blocks(document: dict, name: str):
    """Yield (path, body) pairs from the decoded `path` blocks.

    HCL decodes to a list of single-label dicts, the JSON syntax to either a
    dict keyed by path or a list of such dicts.
    """
    blocks = document.get("path", [])
    if isinstance(blocks, dict):
        blocks = [blocks]
    if not isinstance(blocks, list):
        raise ParseError(f"policy '{name}': 'path' must be a block")
    for block in blocks:
        if not isinstance(block, dict):
            raise ParseError(f"policy '{name}': malformed path block {block!r}")
        for label, body in block.items():
            if label.startswith("__"):
                continue
            yield _unquote(label), body


def _parse_rule(path: str, body, name: str) -> PathRule:
    if not isinstance(body, dict):
        raise ParseError(f"policy '{name}': path \"{path}\" has no body")
    raw_caps = body.get("capabilities")
    if not isinstance(raw_caps, list):
        raise ParseError(f"policy '{name}': path \"{path}\" is missing a capabilities list")
    capabilities = []
    for cap in raw_caps:
        cap = _unquote(cap)
        if not isinstance(cap, str):
            raise ParseError(f"policy '{name}': path \"{path}\" has non-string capability {cap!r}")
        capabilities.append(cap)
    unknown = validate_capabilities(capabilities)
    if unknown is not None:
        logger.warning("policy '%s': unknown capability '%s' on path \"%s\"", name, unknown, path)
    other = {
        key: _unquote(value)
        for key, value in body.items()
        if key != "capabilities" and not key.startswith("__")
    }
    # dict.fromkeys dedupes while keeping document order
    return PathRule(path=path, capabilities=tuple(dict.fromkeys(capabilities)), other=other)


def parse_policy(raw: str | bytes, name: str) -> Policy:
    """Parse a Vault policy document and sort its rules by path.

    Duplicate paths are kept as separate rules; the sort is stable so they
    stay in document order.

    Args:
        raw: The policy text, HCL or JSON.
        name: The policy name, usually the file name.

    Returns:
        The parsed Policy.

    Raises:
        ParseError: If the document is malformed.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"policy '{name}' is not valid UTF-8") from e
    document = _decode(raw, name)
    rules = [_parse_rule(path, body, name) for path, body in _path_blocks(document, name)]
    rules.sort(key=lambda rule: rule.path)
    return Policy(name=name, rules=tuple(rules))
