# propagate.py -- Change-impact propagation for hvresult.
# Implements DESIGN.md Component 3.6: turns a set of changed repository files
# into the identities they affect and each identity's RSoP differential.

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePosixPath

from gitops import WORKING, ChangedFile, Mutation, NotFound
from identity import parse_identity_policies
from policy import ParseError, parse_policy
from rsop import CapabilityMap, ResolvedSet, resolve
from rsop_diff import Differential, diff

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY_ROOT = "auth"
DEFAULT_POLICY_ROOT = "sys/policies/acl"

# Errors scoped to one changed file; anything else aborts the run.
ITEM_ERRORS = (ParseError, NotFound)


class OperationCancelled(RuntimeError):
    """Raised when the caller's cancel event is set during a run."""
    pass


class IdentityRootNotFound(NotFound):
    """Raised when the identity root cannot be listed. Aborts the whole run."""
    pass


class ChangeImpact:
    """Computes RSoP differentials between two revisions of a policy repository.

    `revision_a` is the historical side and `revision_b` the current side,
    normally the working tree. Policy files missing at `revision_b` are
    treated as empty; missing at `revision_a` they are an error, since
    history is expected to be consistent.

    Args:
        repo: Repository collaborator providing read_file_at and list_files.
        revision_a: The historical revision.
        revision_b: The current revision (WORKING for the working tree).
        identity_root: Directory holding identity bindings.
        policy_root: Directory holding policy documents, one file per policy.
        cancel: Optional event; once set, the next repository read raises
            OperationCancelled.
        workers: Thread count for the identity tree walk.
    """

    def __init__(
        self,
        repo,
        revision_a: str,
        revision_b: str = WORKING,
        identity_root: str = DEFAULT_IDENTITY_ROOT,
        policy_root: str = DEFAULT_POLICY_ROOT,
        cancel: threading.Event | None = None,
        workers: int = 1,
    ) -> None:
        self.repo = repo
        self.revision_a = revision_a
        self.revision_b = revision_b
        self.identity_root = identity_root
        self.policy_root = policy_root
        self.cancel = cancel
        self.workers = max(1, workers)

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelled("operation cancelled")

    def _read(self, revision: str, path: str) -> bytes:
        self._check_cancelled()
        return self.repo.read_file_at(revision, path)

    def identity_policy_names(self, revision: str, identity_path: str) -> list[str]:
        """Policy names bound to an identity; an absent identity has none."""
        try:
            raw = self._read(revision, identity_path)
        except NotFound:
            logger.debug("identity %s absent at %r, treating as no policies", identity_path, revision)
            return []
        return parse_identity_policies(raw, identity_path)

    def resolved_set(self, revision: str, policy_names: list[str]) -> ResolvedSet:
        """Load every named policy at `revision`.

        Raises:
            NotFound: If a policy is missing at the historical revision.
            ParseError: If a policy document is malformed.
        """
        policies = []
        for name in policy_names:
            policy_path = str(PurePosixPath(self.policy_root, name))
            try:
                raw = self._read(revision, policy_path)
            except NotFound:
                if revision != self.revision_b:
                    raise
                logger.warning("referenced policy %s does not exist at %r, treating as empty", name, revision)
                continue
            policies.append(parse_policy(raw, name))
        return ResolvedSet(tuple(policies))

    def capability_map(self, revision: str, identity_path: str) -> CapabilityMap:
        names = self.identity_policy_names(revision, identity_path)
        return resolve(self.resolved_set(revision, names))

    def identity_differential(self, identity_path: str) -> Differential:
        """Compare an identity's RSoP at the historical and current revisions."""
        historical = self.capability_map(self.revision_a, identity_path)
        current = self.capability_map(self.revision_b, identity_path)
        logger.debug("identity %s historical=%s current=%s", identity_path, historical, current)
        return diff(historical, current)

    def _deleted_identities(self, changed_files, policy_name: str, affected: dict, known: dict) -> None:
        for change in sorted(changed_files, key=lambda c: c.path):
            if not (change.is_principal and change.mutation is Mutation.DELETED):
                continue
            if change.path in affected or change.path in known:
                continue
            names = self.identity_policy_names(self.revision_a, change.path)
            if policy_name not in names:
                continue
            historical = resolve(self.resolved_set(self.revision_a, names))
            logger.info("deleted identity %s referenced policy %s", change.path, policy_name)
            # an empty "after" map is the deletion sentinel
            affected[change.path] = diff(historical, {})

    def _walk_candidate(self, policy_name: str, identity_path: str) -> Differential | None:
        names = self.identity_policy_names(self.revision_b, identity_path)
        if policy_name not in names:
            return None
        return self.identity_differential(identity_path)

    def _walk(self, policy_name: str, affected: dict, known: dict) -> None:
        self._check_cancelled()
        try:
            listed = self.repo.list_files(self.revision_b, self.identity_root)
        except NotFound as e:
            raise IdentityRootNotFound(f"cannot read identity root '{self.identity_root}': {e}") from e
        candidates = sorted(
            path
            for path in listed
            if path not in affected and path not in known
        )
        logger.debug("walking %d identities under %s for policy %s", len(candidates), self.identity_root, policy_name)
        if self.workers == 1:
            for path in candidates:
                differential = self._walk_candidate(policy_name, path)
                if differential is not None:
                    logger.info("identity %s references policy %s", path, policy_name)
                    affected[path] = differential
            return

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="hvresult-walk")
        try:
            futures = [(path, executor.submit(self._walk_candidate, policy_name, path)) for path in candidates]
            # merge in lexical order so the result matches the serial walk
            for path, future in futures:
                differential = future.result()
                if differential is not None:
                    logger.info("identity %s references policy %s", path, policy_name)
                    affected[path] = differential
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def policy_change_differentials(
        self,
        changed_files,
        policy_name: str,
        known: dict | None = None,
    ) -> dict[str, Differential]:
        """Differentials for every identity that references `policy_name`.

        Identities deleted since the historical revision are found through
        the changed files, everything else by walking the identity root at the
        current revision. Paths already present in `known` are skipped.

        Args:
            changed_files: Every ChangedFile of the run.
            policy_name: Name of the changed policy.
            known: Differentials computed earlier in the run.

        Returns:
            New differentials keyed by identity path.

        Raises:
            IdentityRootNotFound: If the identity root does not exist.
        """
        known = known or {}
        affected: dict[str, Differential] = {}
        self._deleted_identities(changed_files, policy_name, affected, known)
        self._walk(policy_name, affected, known)
        return affected

    def propagate(self, changed_files, errors: dict | None = None) -> dict[str, Differential]:
        """Map every identity affected by `changed_files` to its differential.

        Each changed file is handled once and each identity computed once.
        When `errors` is a dict, parse errors and missing files are recorded
        there under the changed path and the remaining changes still run;
        otherwise they are raised. A missing identity root always aborts.
        """
        results: dict[str, Differential] = {}
        seen: set[str] = set()
        for change in sorted(changed_files, key=lambda c: c.path):
            if change.path in seen or change.path in results:
                continue
            seen.add(change.path)
            try:
                if change.is_principal:
                    logger.info("processing identity change %s", change.path)
                    results[change.path] = self.identity_differential(change.path)
                elif change.is_policy:
                    logger.info("processing policy change %s", change.path)
                    policy_name = PurePosixPath(change.path).name
                    affected = self.policy_change_differentials(changed_files, policy_name, known=results)
                    for path in sorted(affected):
                        results.setdefault(path, affected[path])
                else:
                    logger.debug("ignoring change to %s", change.path)
            except IdentityRootNotFound:
                raise
            except ITEM_ERRORS as e:
                if errors is None:
                    raise
                logger.error("error processing %s: %s", change.path, e)
                errors[change.path] = e
        return results


def propagate(
    repo,
    changed_files: list[ChangedFile],
    revision_a: str,
    revision_b: str = WORKING,
    identity_root: str = DEFAULT_IDENTITY_ROOT,
    policy_root: str = DEFAULT_POLICY_ROOT,
    *,
    errors: dict | None = None,
    cancel: threading.Event | None = None,
    workers: int = 1,
) -> dict[str, Differential]:
    """Shortcut for ChangeImpact(...).propagate(changed_files, errors)."""
    impact = ChangeImpact(
        repo,
        revision_a,
        revision_b,
        identity_root=identity_root,
        policy_root=policy_root,
        cancel=cancel,
        workers=workers,
    )
    return impact.propagate(changed_files, errors=errors)
