# identity.py -- Identity bindings (auth roles, groups, users) for hvresult.
# Implements DESIGN.md Component 3.4: reads the policy names an identity file
# binds, in the JSON shape written by mirror.py.

import json

from policy import ParseError

# Concatenation order of the merged policy-name list.
POLICY_FIELDS: tuple[str, ...] = ("token_policies", "allowed_policies", "policies")


def parse_identity_policies(raw: str | bytes, source: str = "<identity>") -> list[str]:
    """Return every policy name referenced by an identity binding.

    The three policy fields are concatenated without deduplication, so a name
    listed twice is returned twice.

    Args:
        raw: The JSON document.
        source: Where the document came from, used in error messages.

    Returns:
        The merged list of policy names (possibly empty).

    Raises:
        ParseError: If the document is not a JSON object or a policy field is
            not a list of strings.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"error parsing {source} as identity binding: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"identity binding {source} is not a JSON object")

    names: list[str] = []
    for field_name in POLICY_FIELDS:
        value = data.get(field_name)
        if value is None:
            continue
        if not isinstance(value, list) or not all(isinstance(n, str) for n in value):
            raise ParseError(f"identity binding {source}: '{field_name}' must be a list of strings")
        names.extend(value)
    return names


def binding_document(data: dict) -> dict:
    """Reduce raw identity data to the policy fields, dropping empty ones."""
    return {name: list(data[name]) for name in ("policies", "token_policies", "allowed_policies") if data.get(name)}
