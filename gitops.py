# gitops.py -- Git repository access for hvresult.
# Implements DESIGN.md Component 3.5: classifies changed files, and reads
# files and file listings at a git revision or from the working tree.

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath

import git
from git.exc import BadName, BadObject, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

logger = logging.getLogger(__name__)

# Revision value that reads the working tree instead of a commit.
WORKING = ""


class NotFound(LookupError):
    """Raised when a file or directory does not exist at a revision."""
    pass


class CollaboratorError(RuntimeError):
    """Raised when git itself fails or a revision cannot be resolved."""
    pass


class Mutation(Enum):
    ADDED = "Added"
    DELETED = "Deleted"
    MODIFIED = "Modified"


# `git diff --name-status` status letters; copies count as additions and
# renames (R), type changes (T), unmerged (U) and unknown (X) entries are skipped
_STATUS_MUTATIONS: dict[str, Mutation] = {
    "A": Mutation.ADDED,
    "C": Mutation.ADDED,
    "D": Mutation.DELETED,
    "M": Mutation.MODIFIED,
}


def classify_path(path: str) -> tuple[bool, bool]:
    """Return (is_principal, is_policy) for a repository-relative path.

    Anything starting with "auth" is an identity binding. Otherwise a file
    whose parent directory is named "acl" is a policy. The two are exclusive
    and a path may be neither.
    """
    if path.startswith("auth"):
        return True, False
    return False, PurePosixPath(path).parent.name == "acl"


@dataclass(frozen=True)
class ChangedFile:
    path: str
    mutation: Mutation
    is_principal: bool = False
    is_policy: bool = False

    @classmethod
    def from_path(cls, path: str, mutation: Mutation) -> "ChangedFile":
        is_principal, is_policy = classify_path(path)
        return cls(path=path, mutation=mutation, is_principal=is_principal, is_policy=is_policy)


def parse_name_status(output: str) -> list[ChangedFile]:
    """Parse `git diff --name-status` output into classified ChangedFiles.

    Renames, type changes, unmerged and unknown entries are skipped with a
    warning.

    Args:
        output: The raw command output.

    Returns:
        ChangedFiles in output order.
    """
    changes = []
    for line in output.splitlines():
        parts = line.strip().split("\t")
        if len(parts) < 2:
            logger.debug("ignoring unexpected name-status line %r", line)
            continue
        status, path = parts[0], parts[-1]
        # copies carry a similarity score, e.g. C75
        mutation = _STATUS_MUTATIONS.get(status[:1])
        if mutation is None:
            logger.warning("unhandled git file status %r for %s, skipping", status, path)
            continue
        changes.append(ChangedFile.from_path(path, mutation))
    return changes


class Repository:
    """Read-only access to a git repository and its working tree.

    Args:
        directory: Any path inside the repository's working tree.

    Raises:
        CollaboratorError: If the directory is not a git repository.
    """

    def __init__(self, directory: str | Path) -> None:
        try:
            self.repo = git.Repo(directory, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise CollaboratorError(f"'{directory}' is not a git repository") from e
        self.directory = Path(self.repo.working_tree_dir)

    def _tree(self, revision: str):
        try:
            return self.repo.commit(revision).tree
        except (BadName, BadObject, ValueError) as e:
            raise CollaboratorError(f"cannot resolve git revision '{revision}'") from e

    def read_file_at(self, revision: str, path: str) -> bytes:
        """Return the content of `path` at `revision` (WORKING for the working tree).

        Raises:
            NotFound: If the file does not exist at that revision.
            CollaboratorError: If the revision cannot be resolved.
        """
        if revision == WORKING:
            target = self.directory / path
            try:
                return target.read_bytes()
            except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
                raise NotFound(f"'{path}' does not exist in the working tree") from e
            except OSError as e:
                raise CollaboratorError(f"error reading '{target}': {e}") from e
        tree = self._tree(revision)
        try:
            blob = tree / path
        except KeyError as e:
            raise NotFound(f"'{path}' does not exist at {revision}") from e
        if blob.type != "blob":
            raise NotFound(f"'{path}' is not a file at {revision}")
        return blob.data_stream.read()

    def list_files(self, revision: str, directory: str) -> list[str]:
        """Return every file below `directory` as sorted repository-relative paths.

        Raises:
            NotFound: If the directory does not exist at that revision.
        """
        if revision == WORKING:
            root = self.directory / directory
            if not root.is_dir():
                raise NotFound(f"directory '{directory}' does not exist in the working tree")
            return sorted(
                item.relative_to(self.directory).as_posix()
                for item in root.rglob("*")
                if item.is_file()
            )
        tree = self._tree(revision)
        try:
            subtree = tree / directory
        except KeyError as e:
            raise NotFound(f"directory '{directory}' does not exist at {revision}") from e
        if subtree.type != "tree":
            raise NotFound(f"'{directory}' is not a directory at {revision}")
        return sorted(item.path for item in subtree.traverse() if item.type == "blob")

    def list_changed_files(self, base_revision: str) -> list[ChangedFile]:
        """Changes between `base_revision` and the working tree.

        Rename detection is off so a moved file shows as a deletion plus an
        addition.
        """
        try:
            output = self.repo.git.diff(base_revision, name_status=True, no_renames=True)
        except GitCommandError as e:
            raise CollaboratorError(f"error running git diff {base_revision} --name-status --no-renames: {e}") from e
        logger.debug("git diff %s --name-status:\n%s", base_revision, output)
        return parse_name_status(output)

    def default_comparison_revision(self, reference: str | None = None) -> str:
        """Pick the revision to compare the working tree against.

        Uses `reference` when given, then `git config init.defaultBranch`, then
        the last line of `git branch`.

        Raises:
            CollaboratorError: If none of those yields a revision.
        """
        if reference:
            return reference
        try:
            configured = self.repo.git.config("init.defaultBranch").strip()
        except GitCommandError as e:
            # exit status 1 means the key is unset
            if e.status != 1:
                raise CollaboratorError(f"error running git config init.defaultBranch: {e}") from e
            configured = ""
        if configured:
            return configured
        try:
            output = self.repo.git.branch().strip()
        except GitCommandError as e:
            raise CollaboratorError(f"error running git branch: {e}") from e
        if not output:
            raise CollaboratorError("cannot determine a default branch: git branch output empty")
        guessed = output.splitlines()[-1].lstrip("*").strip()
        logger.info("git config init.defaultBranch returned nothing, guessed default branch %s", guessed)
        return guessed
