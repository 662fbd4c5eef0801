"""Tests for change-impact propagation over an in-memory repository."""

import threading

import pytest

from conftest import policy_text
from gitops import WORKING, ChangedFile, Mutation, NotFound
from policy import ParseError
from propagate import ChangeImpact, IdentityRootNotFound, OperationCancelled, propagate
from rsop_diff import Differential

P_BASE = policy_text(("secret/a", ["read"]))
P_WORKING = policy_text(("secret/a", ["read", "update"]))
Q = policy_text(("secret/b", ["list"]))


@pytest.fixture
def repo(fake_repo):
    historical = {
        "sys/policies/acl/P": P_BASE,
        "sys/policies/acl/Q": Q,
        "auth/gcp/role/r1": '{"token_policies": ["P"]}',
        "auth/gcp/role/gone": '{"policies": ["P", "Q"]}',
        "auth/gcp/role/other": '{"policies": ["Q"]}',
    }
    working = dict(historical)
    working["sys/policies/acl/P"] = P_WORKING
    del working["auth/gcp/role/gone"]
    return fake_repo(historical, working)


def changes(*entries: tuple[str, Mutation]) -> list[ChangedFile]:
    return [ChangedFile.from_path(path, mutation) for path, mutation in entries]


POLICY_AND_DELETION = changes(
    ("sys/policies/acl/P", Mutation.MODIFIED),
    ("auth/gcp/role/gone", Mutation.DELETED),
)


def test_policy_change_and_identity_deletion(repo) -> None:
    result = propagate(repo, POLICY_AND_DELETION, "base")
    assert list(result) == ["auth/gcp/role/gone", "auth/gcp/role/r1"]
    assert result["auth/gcp/role/gone"] == Differential(removed={
        "secret/a": {"read": ["P"]},
        "secret/b": {"list": ["Q"]},
    })
    assert result["auth/gcp/role/r1"] == Differential(added={"secret/a": {"update": ["P"]}})


def test_policy_change_differentials_includes_deleted_identities(repo) -> None:
    impact = ChangeImpact(repo, "base")
    affected = impact.policy_change_differentials(POLICY_AND_DELETION, "P")
    assert sorted(affected) == ["auth/gcp/role/gone", "auth/gcp/role/r1"]
    assert affected["auth/gcp/role/gone"].added is None
    assert affected["auth/gcp/role/gone"].removed == {
        "secret/a": {"read": ["P"]},
        "secret/b": {"list": ["Q"]},
    }
    # "other" does not reference P
    assert "auth/gcp/role/other" not in affected


def test_known_identities_are_skipped(repo) -> None:
    impact = ChangeImpact(repo, "base")
    known = {"auth/gcp/role/r1": Differential()}
    affected = impact.policy_change_differentials(POLICY_AND_DELETION, "P", known=known)
    assert list(affected) == ["auth/gcp/role/gone"]


def test_unchanged_policy_reference_is_a_no_op(fake_repo) -> None:
    files = {
        "sys/policies/acl/Q": Q,
        "auth/gcp/role/r1": '{"policies": ["Q"]}',
    }
    working = dict(files, **{"sys/policies/acl/Q": Q + "\n# comment only\n"})
    repo = fake_repo(files, working)
    result = propagate(repo, changes(("sys/policies/acl/Q", Mutation.MODIFIED)), "base")
    assert result == {"auth/gcp/role/r1": Differential()}


def test_added_identity_gains_everything(repo) -> None:
    repo.revisions[WORKING]["auth/gcp/role/new"] = '{"policies": ["Q"]}'
    result = propagate(repo, changes(("auth/gcp/role/new", Mutation.ADDED)), "base")
    assert result == {"auth/gcp/role/new": Differential(added={"secret/b": {"list": ["Q"]}})}


def test_duplicate_policy_reference_counts_twice(repo) -> None:
    repo.revisions[WORKING]["auth/gcp/role/twice"] = '{"token_policies": ["Q"], "policies": ["Q"]}'
    result = propagate(repo, changes(("auth/gcp/role/twice", Mutation.ADDED)), "base")
    differential = result["auth/gcp/role/twice"]
    assert differential.added == {"secret/b": {"list": ["Q", "Q"]}}
    assert differential.metrics().capability_changes == 2


def test_policy_missing_from_working_tree_is_empty(repo) -> None:
    del repo.revisions[WORKING]["sys/policies/acl/P"]
    result = propagate(repo, changes(("sys/policies/acl/P", Mutation.DELETED)), "base")
    assert result == {"auth/gcp/role/r1": Differential(removed={"secret/a": {"read": ["P"]}})}


def test_policy_missing_from_history_is_an_error(repo) -> None:
    repo.revisions[WORKING]["auth/gcp/role/r1"] = '{"token_policies": ["P", "ghost"]}'
    repo.revisions["base"]["auth/gcp/role/r1"] = '{"token_policies": ["ghost"]}'
    with pytest.raises(NotFound):
        propagate(repo, changes(("auth/gcp/role/r1", Mutation.MODIFIED)), "base")


def test_errors_are_collected_per_changed_file(repo) -> None:
    repo.revisions[WORKING]["sys/policies/acl/broken"] = 'path "x" {\n  capabilities = ["read"\n'
    repo.revisions[WORKING]["auth/gcp/role/r9"] = '{"policies": ["broken"]}'
    errors = {}
    result = propagate(
        repo,
        changes(
            ("auth/gcp/role/r9", Mutation.ADDED),
            ("sys/policies/acl/P", Mutation.MODIFIED),
        ),
        "base",
        errors=errors,
    )
    assert list(errors) == ["auth/gcp/role/r9"]
    assert isinstance(errors["auth/gcp/role/r9"], ParseError)
    assert result["auth/gcp/role/r1"] == Differential(added={"secret/a": {"update": ["P"]}})


def test_missing_identity_root_aborts_the_run(repo) -> None:
    errors = {}
    with pytest.raises(NotFound, match="identity root 'nowhere'") as exc:
        propagate(
            repo,
            changes(("sys/policies/acl/P", Mutation.MODIFIED)),
            "base",
            identity_root="nowhere",
            errors=errors,
        )
    assert isinstance(exc.value, IdentityRootNotFound)
    assert errors == {}


def test_changes_outside_known_trees_are_ignored(repo) -> None:
    assert propagate(repo, changes(("README.md", Mutation.MODIFIED)), "base") == {}
    assert repo.reads == []


def test_cancel_stops_before_reading(repo) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        propagate(repo, POLICY_AND_DELETION, "base", cancel=cancel)
    assert repo.reads == []


def test_cancel_stops_before_listing_identities(repo) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelled):
        propagate(repo, changes(("sys/policies/acl/P", Mutation.MODIFIED)), "base", cancel=cancel)
    assert repo.listings == []


def test_duplicate_changed_files_are_processed_once(repo) -> None:
    propagate(repo, POLICY_AND_DELETION, "base")
    single = len(repo.reads)
    repo.reads.clear()
    propagate(repo, POLICY_AND_DELETION + POLICY_AND_DELETION, "base")
    assert len(repo.reads) == single


def test_parallel_walk_matches_serial_walk(repo) -> None:
    for i in range(20):
        repo.revisions[WORKING][f"auth/approle/role/r{i:02d}"] = '{"policies": ["P"]}'
    serial = propagate(repo, POLICY_AND_DELETION, "base")
    parallel = propagate(repo, POLICY_AND_DELETION, "base", workers=4)
    assert parallel == serial
    assert list(parallel) == list(serial)
