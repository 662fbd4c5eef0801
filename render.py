# render.py -- Human-readable output for hvresult.
# Implements DESIGN.md Component 3.7: policy-language text for a capability
# map and GitHub markdown tables for differentials.

import jinja2

from policy import sorted_capabilities
from rsop import CapabilityMap
from rsop_diff import Differential, is_empty, metrics, sorted_paths

ADDED_MARK = "➕"
REMOVED_MARK = "➖"

_env = jinja2.Environment(
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)

_HCL_TEMPLATE = _env.from_string(
    """# generated by hvresult
{% for path, capabilities in paths %}
path "{{ path }}" {
  capabilities = [
{% for cap, policies in capabilities %}
    "{{ cap }}", # from: {{ policies | join(", ") }}
{% endfor %}
  ]
}
{% if not loop.last %}

{% endif %}
{% endfor %}
"""
)


def _ordered(capmap: CapabilityMap) -> list[tuple[str, list[tuple[str, list[str]]]]]:
    return [
        (path, [(cap, capmap[path][cap]) for cap in sorted_capabilities(capmap[path])])
        for path in sorted(capmap)
    ]


def hcl(capmap: CapabilityMap) -> str:
    """Render a capability map as a policy document annotated with its sources.

    Paths are emitted in lexical order, capabilities in display order, each
    followed by a comment naming the policies that grant it.
    """
    return _HCL_TEMPLATE.render(paths=_ordered(capmap))


def _rows(path: str, caps: dict | None, mark: str, path_emitted: bool) -> tuple[list[list[str]], bool]:
    rows = []
    for cap in sorted_capabilities(caps or {}):
        rows.append([
            "" if path_emitted else path,
            mark,
            cap,
            "`" + "` , `".join(caps[cap]) + "`",
        ])
        path_emitted = True
    return rows, path_emitted


def markdown_table(differential: Differential | None) -> str:
    """Render a differential as a GitHub-flavored markdown table.

    Paths are sorted lexically and shown once per group; added rows come
    before removed rows. An empty differential renders as "".
    """
    if is_empty(differential):
        return ""
    header = ["Path", "Change", "Capability", "Policy / Policies"]
    rows = []
    for path in sorted_paths(differential):
        added, emitted = _rows(path, (differential.added or {}).get(path), ADDED_MARK, False)
        removed, _ = _rows(path, (differential.removed or {}).get(path), REMOVED_MARK, emitted)
        rows.extend(added + removed)

    widths = [len(h) for h in header]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    def line(cells):
        return "| " + " | ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + " |"

    out = [line(header), "| " + " | ".join("-" * w for w in widths) + " |"]
    out.extend(line(row) for row in rows)
    return "\n".join(out)


def summary(path: str, differential: Differential | None) -> str:
    """One-sentence headline for an identity's differential."""
    if is_empty(differential):
        return f"0 effective changes to `{path}` (policy assignment change is a no-op)."
    count = metrics(differential).capability_changes
    word = "change" if count == 1 else "changes"
    return f"{count} effective {word} to `{path}`."
