# mirror.py -- Mirroring policies and identity bindings into a repository tree.
# Implements DESIGN.md Component 3.9: writes whatever a PolicySource returns in
# the directory layout that gitops.py classifies and propagate.py reads.

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import storage
from identity import binding_document

logger = logging.getLogger(__name__)

FETCH_CONCURRENCY = 5

# Auth method type -> directories its identities are mirrored into
IDENTITY_COLLECTIONS: dict[str, tuple[str, ...]] = {
    "aws": ("role",),
    "gcp": ("role",),
    "azure": ("role",),
    "kubernetes": ("role",),
    "oidc": ("role",),
    "oci": ("role",),
    "saml": ("role",),
    "kerberos": ("groups",),
    "ldap": ("groups", "users"),
    "okta": ("groups", "users"),
    "radius": ("users",),
    "token": ("roles",),
}


class MirrorError(Exception):
    """Raised when an auth mount cannot be mirrored."""
    pass


@dataclass(frozen=True)
class Mount:
    """An auth mount, e.g. Mount("gcp", "gcp") or Mount("corp-ldap", "ldap")."""

    name: str
    type: str


class PolicySource(Protocol):
    """Where policies and identities come from, typically a Vault server."""

    def list_policy_names(self) -> set[str]: ...

    def fetch_policy(self, name: str) -> str: ...

    def list_identity_mounts(self) -> list[Mount]: ...

    def list_identities(self, mount: Mount, collection: str) -> list[str]: ...

    def fetch_identity(self, mount: Mount, collection: str, key: str) -> dict: ...


def mirror_policies(source: PolicySource, policy_dir: str | Path) -> list[str]:
    """Write every policy of `source` into `policy_dir` and prune the rest.

    Returns:
        The mirrored policy names, sorted.
    """
    try:
        names = sorted(source.list_policy_names())
        with ThreadPoolExecutor(max_workers=FETCH_CONCURRENCY) as executor:
            texts = list(executor.map(source.fetch_policy, names))
    except Exception as e:
        raise MirrorError(f"error downloading policies: {e}") from e
    Path(policy_dir).mkdir(parents=True, exist_ok=True)
    for name, text in zip(names, texts):
        logger.debug("writing policy %s", name)
        storage.save_policy(policy_dir, name, text)
    logger.info("downloaded %d policies", len(names))
    for removed in storage.prune_files(policy_dir, set(names)):
        logger.info("removed extraneous policy file %s", removed)
    return names


def mirror_identities(source: PolicySource, auth_dir: str | Path) -> list[Path]:
    """Write every identity binding of `source` below `auth_dir`.

    Files land in auth_dir/<mount>/<collection>/<key> and hold only the
    non-empty policy fields.

    Raises:
        MirrorError: If a mount type has no known identity collections or the
            source fails.
    """
    written = []
    for mount in sorted(source.list_identity_mounts(), key=lambda m: m.name):
        collections = IDENTITY_COLLECTIONS.get(mount.type)
        if collections is None:
            raise MirrorError(f"unknown paths for listing identities of mount type '{mount.type}'")
        mount_dir = Path(auth_dir) / mount.name.strip("/")
        count = 0
        for collection in collections:
            def fetch(key, collection=collection):
                return source.fetch_identity(mount, collection, key)

            try:
                keys = sorted(source.list_identities(mount, collection))
                if not keys:
                    logger.warning("no identities listed for auth/%s %s, skipping", mount.name, collection)
                    continue
                with ThreadPoolExecutor(max_workers=FETCH_CONCURRENCY) as executor:
                    bindings = list(executor.map(fetch, keys))
            except Exception as e:
                raise MirrorError(f"error downloading auth/{mount.name} {collection}: {e}") from e
            for key, data in zip(keys, bindings):
                target = mount_dir / collection / key
                written.append(storage.save_identity(target, binding_document(data)))
            count += len(keys)
        logger.info("downloaded %d identities from auth/%s", count, mount.name)
    return written
