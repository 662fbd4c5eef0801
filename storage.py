# storage.py -- On-disk mirror files for hvresult.
# Implements DESIGN.md Component 3.8: atomic writes of policy documents and
# identity bindings into the repository tree, and pruning of stale files.

import json
import os
import tempfile
from pathlib import Path


def _atomic_write(target: Path, data: str) -> None:
    """Write data to target through a temp file in the same directory.

    The temp file is renamed over the target, so readers never see a
    partially written file.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(data)
        os.chmod(tmp_path, 0o640)
        os.replace(tmp_path, target)
    except Exception:
        # Clean up temp file on failure
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def save_policy(policy_dir: str | Path, name: str, text: str) -> Path:
    """Write a raw policy document to policy_dir/name.

    Args:
        policy_dir: Directory holding one file per policy.
        name: The policy name, used verbatim as the file name.
        text: The policy document as returned by the server.

    Returns:
        The path written.
    """
    target = Path(policy_dir) / name
    _atomic_write(target, text)
    return target


def save_identity(target: str | Path, binding: dict) -> Path:
    """Write an identity binding as 2-space indented JSON.

    Args:
        target: File path of the identity binding.
        binding: The binding document (see identity.binding_document).

    Returns:
        The path written.
    """
    target = Path(target)
    _atomic_write(target, json.dumps(binding, indent=2) + "\n")
    return target


def prune_files(directory: str | Path, keep: set[str]) -> list[Path]:
    """Delete regular files in directory whose names are not in keep.

    Subdirectories are left alone.

    Returns:
        The removed paths, sorted.
    """
    removed = []
    for entry in sorted(Path(directory).iterdir()):
        if entry.is_file() and entry.name not in keep:
            entry.unlink()
            removed.append(entry)
    return removed
