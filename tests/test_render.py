"""Tests for HCL and markdown rendering."""

from render import hcl, markdown_table, summary
from rsop_diff import Differential


def test_hcl_annotates_sources() -> None:
    capmap = {
        "secret/b": {"list": ["q"]},
        "secret/a": {"update": ["p"], "read": ["p", "q"]},
    }
    assert hcl(capmap) == (
        "# generated by hvresult\n"
        'path "secret/a" {\n'
        "  capabilities = [\n"
        '    "read", # from: p, q\n'
        '    "update", # from: p\n'
        "  ]\n"
        "}\n"
        "\n"
        'path "secret/b" {\n'
        "  capabilities = [\n"
        '    "list", # from: q\n'
        "  ]\n"
        "}\n"
    )


def test_hcl_of_empty_map() -> None:
    assert hcl({}) == "# generated by hvresult\n"


def test_markdown_table_rows() -> None:
    d = Differential(
        added={"secret/a": {"update": ["p"]}, "secret/c": {"read": ["p", "q"]}},
        removed={"secret/a": {"read": ["old"]}},
    )
    lines = markdown_table(d).splitlines()
    assert [c.strip() for c in lines[0].split("|")[1:-1]] == ["Path", "Change", "Capability", "Policy / Policies"]
    assert len({len(line) for line in lines}) == 1
    assert set(lines[1]) <= {"|", "-", " "}
    cells = [[c.strip() for c in line.split("|")[1:-1]] for line in lines[2:]]
    assert cells == [
        ["secret/a", "➕", "update", "`p`"],
        ["", "➖", "read", "`old`"],
        ["secret/c", "➕", "read", "`p` , `q`"],
    ]


def test_markdown_table_of_empty_differential() -> None:
    assert markdown_table(Differential()) == ""
    assert markdown_table(None) == ""


def test_summary() -> None:
    assert summary("auth/gcp/role/r1", Differential(added={"x": {"read": ["p"]}})) == (
        "1 effective change to `auth/gcp/role/r1`."
    )
    assert summary("auth/x", Differential(removed={"x": {"read": ["p", "q"]}})) == (
        "2 effective changes to `auth/x`."
    )
    assert summary("auth/x", Differential()) == (
        "0 effective changes to `auth/x` (policy assignment change is a no-op)."
    )
