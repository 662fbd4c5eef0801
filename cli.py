# cli.py -- Command-line interface for hvresult.
# Implements DESIGN.md Component 3.11: thin CLI wrapper that parses arguments,
# dispatches to gitops/propagate/render, and formats output.

import argparse
import logging
import sys

import render
from config import load_config
from gitops import WORKING, CollaboratorError, NotFound, Repository
from policy import ParseError
from propagate import ChangeImpact, OperationCancelled
from rsop_diff import diff, is_empty
from logging_config import setup_logging

logger = logging.getLogger("hvresult")


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argparse parser with all subcommands.

    Subcommands: diff, rsop.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="hvresult",
        description="Analyzes Vault identities and their policies",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="print debug level logs")
    parser.add_argument("--env-file", default=None, help="load settings from this .env file")
    subparsers = parser.add_subparsers(dest="command")

    # -- diff --
    p_diff = subparsers.add_parser(
        "diff",
        help="Emit markdown of RSoP changes between a git reference and the working tree",
    )
    p_diff.add_argument("--directory", default=".", help="git repository holding auth/ and sys/policies/acl/")
    p_diff.add_argument(
        "--compare-ref",
        default=None,
        help="compare to this git reference instead of the default branch (e.g. 'main')",
    )
    p_diff.add_argument("--workers", type=int, default=None, help="threads used to scan identities")

    # -- rsop --
    p_rsop = subparsers.add_parser("rsop", help="Print the RSoP of one identity binding")
    p_rsop.add_argument("identity", help="identity path relative to the repository (e.g. auth/gcp/role/ci)")
    p_rsop.add_argument("--directory", default=".")
    p_rsop.add_argument("--revision", default=WORKING, help="git revision to read (default: working tree)")
    p_rsop.add_argument("--format", choices=["hcl", "table"], default="hcl")

    return parser


def run_diff(args, config) -> int:
    """Print a summary and table for every identity affected by local changes.

    Returns:
        0 when every change was processed, 1 when some were skipped.
    """
    repo = Repository(args.directory)
    if not (repo.directory / config.policy_dir).is_dir():
        raise NotFound(f"policy directory '{config.policy_dir}' does not exist - wrong directory specified?")
    base = repo.default_comparison_revision(args.compare_ref or config.compare_ref)
    changes = repo.list_changed_files(base)
    logger.info("detected %d changed files against %s", len(changes), base)

    impact = ChangeImpact(
        repo,
        base,
        WORKING,
        identity_root=config.identity_dir,
        policy_root=config.policy_dir,
        workers=args.workers or config.workers,
    )
    errors = {}
    diffs = impact.propagate(changes, errors=errors)
    for path in sorted(diffs):
        differential = diffs[path]
        print(render.summary(path, differential))
        print()
        if not is_empty(differential):
            print(render.markdown_table(differential))
            print()
    for path in sorted(errors):
        print(f"Error: {path}: {errors[path]}", file=sys.stderr)
    return 1 if errors else 0


def run_rsop(args, config) -> int:
    repo = Repository(args.directory)
    impact = ChangeImpact(
        repo,
        args.revision,
        args.revision,
        identity_root=config.identity_dir,
        policy_root=config.policy_dir,
    )
    # a missing identity is an error here, unlike during propagation
    repo.read_file_at(args.revision, args.identity)
    capmap = impact.capability_map(args.revision, args.identity)
    if args.format == "hcl":
        print(render.hcl(capmap).strip())
    else:
        print(render.markdown_table(diff({}, capmap)))
    return 0


def main(argv=None) -> None:
    """Entry point. Parse arguments, dispatch to the command, format output."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(args.env_file)
        setup_logging("DEBUG" if args.verbose else config.log_level)

        if args.command == "diff":
            status = run_diff(args, config)

        elif args.command == "rsop":
            status = run_rsop(args, config)

    except (ParseError, NotFound, CollaboratorError, OperationCancelled, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(status)


if __name__ == "__main__":
    main()
