"""Command line interface for GBM with parity to MCP tools."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .constants import DEFAULT_RECENT_BRANCHES, DEFAULT_RECENT_COMMITS
from .engine import BranchEngine
from .errors import ErrorCode, GBMError
from .file_manager import FileManager
from .runtime import LOG_LEVELS, configure_logging, get_runtime_settings


def _print_tree(nodes: list[dict[str, Any]], indent: int = 0) -> None:
    pad = "  " * indent
    for node in nodes:
        if node.get("kind") == "dir":
            marker = "*" if node.get("has_current_branch") else " "
            print(f"{pad}{marker}{node.get('path')} ({node.get('branch_count')})")
            _print_tree(node.get("children", []), indent + 1)
        else:
            branch = node.get("branch", {})
            marker = "*" if branch.get("current") else "-"
            star = " [starred]" if branch.get("starred") else ""
            print(f"{pad}{marker} {branch.get('name')}{star}")


def _print_payload(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return

    status = payload.get("status", "unknown").upper()
    message = payload.get("message", "")
    print(f"[{status}] {message}")

    if payload.get("status") == "error":
        error_code = payload.get("error_code", "")
        suggestion = payload.get("suggestion", "")
        if error_code:
            print(f"error_code: {error_code}")
        if suggestion:
            print(f"suggestion: {suggestion}")
        for failure in payload.get("failed", []):
            print(f"! {failure.get('name')}: {failure.get('message')}")
        return

    for key in (
        "repo_path",
        "target_branch",
        "remote",
        "current_branch",
        "new_name",
        "remote_deleted",
        "enabled",
        "count",
        "checked_at",
        "total_branches",
        "starred_branches",
        "with_description",
        "recently_used",
        "total_git_branches",
        "patch_file",
    ):
        if key in payload and payload[key] not in ("", None):
            print(f"{key}: {payload[key]}")

    if isinstance(payload.get("branch"), dict):
        branch = payload["branch"]
        for field in ("name", "hash", "message", "author", "date", "tracking", "description"):
            if branch.get(field) not in ("", None):
                print(f"{field}: {branch[field]}")

    if isinstance(payload.get("metadata"), dict):
        print("metadata:")
        for meta_key, meta_value in payload["metadata"].items():
            print(f"  {meta_key}: {meta_value}")

    for branch in payload.get("branches", []):
        marker = "*" if branch.get("current") else "-"
        star = " [starred]" if branch.get("starred") else ""
        tracking = f" [{branch['tracking']}]" if branch.get("tracking") else ""
        print(f"{marker} {branch.get('name')}{tracking}{star} {branch.get('message', '')}")

    if isinstance(payload.get("tree"), dict):
        _print_tree(payload["tree"].get("roots", []))

    for commit in payload.get("commits", []):
        refs = ", ".join(ref.get("name", "") for ref in commit.get("refs", []))
        fork = " (fork point)" if commit.get("is_fork_point") else ""
        suffix = f" ({refs})" if refs else ""
        print(f"{commit.get('hash')} {commit.get('message')} - {commit.get('relative_date')}{suffix}{fork}")

    for entry in payload.get("entries", []):
        print(f"- [{entry.get('date', '')}] {entry.get('branch', '')}")

    for key in ("merged", "stale_refs", "pruned", "deleted"):
        for name in payload.get(key, []):
            print(f"- {name}")

    for key in ("patch", "diff"):
        if payload.get(key):
            print(payload[key], end="" if payload[key].endswith("\n") else "\n")


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, GBMError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check command arguments and constraints.",
            "details": {
                "errors": exc.errors(include_url=False, include_context=False, include_input=False)
            },
        }
    if isinstance(exc, ValueError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": str(exc),
            "suggestion": "Check GBM_* environment variables and command options.",
            "details": {},
        }
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Retry with --json and --log-level DEBUG for diagnostics.",
        "details": {},
    }


def _add_common(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("-d", "--directory", default=".", help="Repository directory")
    subparser.add_argument("--target", default="", help="Target branch override")
    subparser.add_argument("--remote", default="", help="Remote name override")
    subparser.add_argument("--json", action="store_true", help="Output machine-readable JSON")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gbm-cli", description="Git Branch Manager CLI")
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        default=None,
        help="Logging level (defaults to GBM_LOG_LEVEL or WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    info = subparsers.add_parser("info", help="Show repository settings")
    _add_common(info)

    set_target = subparsers.add_parser("set-target", help="Change the target branch")
    set_target.add_argument("name", help="Target branch name")
    set_target.add_argument("--persist", action="store_true", help="Save to .git/gbm-config.yaml")
    _add_common(set_target)

    list_cmd = subparsers.add_parser("list", help="List branches with metadata")
    list_group = list_cmd.add_mutually_exclusive_group()
    list_group.add_argument("--starred", action="store_true", help="Show only starred branches")
    list_group.add_argument(
        "--recent",
        type=int,
        nargs="?",
        const=DEFAULT_RECENT_BRANCHES,
        default=None,
        help="Show recently checked out branches",
    )
    _add_common(list_cmd)

    show = subparsers.add_parser("show", help="Show one branch")
    show.add_argument("branch", help="Branch name")
    _add_common(show)

    current = subparsers.add_parser("current", help="Show the current branch")
    _add_common(current)

    tree = subparsers.add_parser("tree", help="Show branches grouped by path prefix")
    _add_common(tree)

    stats = subparsers.add_parser("stats", help="Show metadata statistics")
    _add_common(stats)

    log = subparsers.add_parser("log", help="Show recent commits on HEAD")
    log.add_argument("-n", "--limit", type=int, default=DEFAULT_RECENT_COMMITS, help="Number of commits")
    _add_common(log)

    history = subparsers.add_parser("history", help="Show checkout history from the reflog")
    _add_common(history)

    checkout = subparsers.add_parser("checkout", help="Check out a branch")
    checkout.add_argument("branch", help="Branch name")
    _add_common(checkout)

    create = subparsers.add_parser("create", help="Create and check out a branch")
    create.add_argument("name", help="Branch name")
    create.add_argument("--from", dest="start_point", default="HEAD", help="Start point")
    _add_common(create)

    rename = subparsers.add_parser("rename", help="Rename a branch")
    rename.add_argument("old_name", help="Current branch name")
    rename.add_argument("new_name", help="New branch name")
    _add_common(rename)

    delete = subparsers.add_parser("delete", help="Delete one or more branches")
    delete.add_argument("branches", nargs="+", help="Branch names")
    delete.add_argument("--force", action="store_true", help="Delete even if unmerged")
    delete.add_argument("--remote-too", action="store_true", help="Also delete on the remote")
    _add_common(delete)

    star = subparsers.add_parser("star", help="Toggle the starred flag")
    star.add_argument("branch", help="Branch name")
    _add_common(star)

    describe = subparsers.add_parser("describe", help="Set or clear a branch description")
    describe.add_argument("branch", help="Branch name")
    describe.add_argument("description", nargs="?", default="", help="Description (empty clears)")
    _add_common(describe)

    merged = subparsers.add_parser("merged", help="List branches merged into the target")
    _add_common(merged)

    stale = subparsers.add_parser("stale", help="Count stale remote-tracking refs")
    stale.add_argument("--force", action="store_true", help="Ignore the check interval")
    _add_common(stale)

    prune = subparsers.add_parser("prune", help="Prune stale remote-tracking refs")
    _add_common(prune)

    auto_prune = subparsers.add_parser("auto-prune", help="Show or enable fetch.prune")
    auto_prune.add_argument("--enable", action="store_true", help="Set fetch.prune=true")
    _add_common(auto_prune)

    patch = subparsers.add_parser("patch", help="Diff a branch against the target")
    patch.add_argument("branch", help="Branch name")
    patch.add_argument("-o", "--output", default="", help="Write the patch to this file")
    _add_common(patch)

    apply_cmd = subparsers.add_parser("apply", help="Apply a patch file")
    apply_cmd.add_argument("patch_file", help="Patch file path")
    _add_common(apply_cmd)

    diff = subparsers.add_parser("diff", help="Show the diff of one commit")
    diff.add_argument("hash", help="Commit hash")
    _add_common(diff)

    pull = subparsers.add_parser("pull", help="Pull a branch from the remote")
    pull.add_argument("branch", nargs="?", default="", help="Branch name (defaults to current)")
    _add_common(pull)

    push = subparsers.add_parser("push", help="Push a branch to the remote")
    push.add_argument("branch", help="Branch name")
    push.add_argument("-u", "--set-upstream", action="store_true", help="Set upstream tracking")
    _add_common(push)

    return parser


def _dispatch(engine: BranchEngine, args: argparse.Namespace) -> dict[str, Any]:
    command = args.command
    if command == "set-target":
        response = engine.set_target_branch(args.name, persist=args.persist)
    elif command == "list":
        if args.starred:
            response = engine.get_starred_branches()
        elif args.recent is not None:
            response = engine.get_recent_branches(args.recent)
        else:
            response = engine.fetch_all_branches()
    elif command == "show":
        response = engine.get_branch(args.branch)
    elif command == "current":
        response = engine.get_current_branch()
    elif command == "tree":
        response = engine.get_tree()
    elif command == "stats":
        response = engine.get_stats()
    elif command == "log":
        response = engine.fetch_recent_commits(args.limit)
    elif command == "history":
        response = engine.fetch_checkout_history()
    elif command == "checkout":
        response = engine.checkout_branch(args.branch)
    elif command == "create":
        response = engine.create_branch(args.name, start_point=args.start_point)
    elif command == "rename":
        response = engine.rename_branch(args.old_name, args.new_name)
    elif command == "delete":
        if len(args.branches) == 1:
            response = engine.delete_branch(args.branches[0], force=args.force, remote=args.remote_too)
        else:
            response = engine.delete_branches(args.branches, force=args.force, remote=args.remote_too)
    elif command == "star":
        response = engine.toggle_star(args.branch)
    elif command == "describe":
        response = engine.update_description(args.branch, args.description)
    elif command == "merged":
        response = engine.compute_merged_set()
    elif command == "stale":
        response = engine.compute_stale_remote_refs(force=args.force)
    elif command == "prune":
        response = engine.prune_remote()
    elif command == "auto-prune":
        response = engine.enable_auto_prune() if args.enable else engine.get_auto_prune()
    elif command == "patch":
        response = engine.generate_branch_patch(args.branch)
        if args.output and response.status == "success":
            output = Path(args.output).expanduser()
            FileManager().write_text(output, response.patch)
            return {
                "status": "success",
                "message": f"Patch written to {output}",
                "branch": response.branch,
                "target_branch": response.target_branch,
                "patch_file": str(output),
            }
    elif command == "apply":
        response = engine.apply_patch_file(args.patch_file)
    elif command == "diff":
        response = engine.get_commit_diff(args.hash)
    elif command == "pull":
        response = engine.pull_branch(args.branch or None)
    elif command == "push":
        response = engine.push_branch(args.branch, set_upstream=args.set_upstream)
    else:
        response = engine.get_repository()
    return response.model_dump(mode="json")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    as_json = bool(getattr(args, "json", False))

    try:
        settings = get_runtime_settings()
        configure_logging(args.log_level or settings.log_level)
        engine = BranchEngine.for_repository(
            args.directory,
            target_branch=args.target or None,
            remote=args.remote or None,
            settings=settings,
        )
        payload = _dispatch(engine, args)
    except Exception as exc:  # noqa: BLE001
        payload = _error_payload(exc)

    _print_payload(payload, as_json=as_json)
    return 0 if payload.get("status") == "success" else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
