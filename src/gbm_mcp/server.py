"""FastMCP server exposing GBM operations as tools over stdio."""

from __future__ import annotations

import argparse
import json
import logging
import time
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Any, Callable, Literal

from mcp.server.fastmcp import FastMCP
from pydantic import Field, ValidationError

from . import __version__
from .constants import DEFAULT_RECENT_BRANCHES, DEFAULT_RECENT_COMMITS
from .engine import BranchEngine
from .errors import ErrorCode, GBMError
from .runtime import LOG_LEVELS, RuntimeSettings, configure_logging, get_runtime_settings

logger = logging.getLogger(__name__)


def _build_fastmcp() -> FastMCP:
    """Instantiate FastMCP, dropping keyword arguments older SDKs reject."""
    kwargs: dict[str, Any] = {
        "name": "git-branch-manager",
        "instructions": (
            "Inspect and manage local git branches. Use gbm_list_branches, gbm_tree and "
            "gbm_stats to explore, gbm_checkout, gbm_create_branch, gbm_rename_branch and "
            "gbm_delete_branch to operate branches, gbm_merged_branches to find branches "
            "already merged (including squash merges), and gbm_stale_remote_refs with "
            "gbm_prune_remote for remote housekeeping."
        ),
        "version": __version__,
        "json_response": True,
    }
    optional_keys = ("version", "json_response")

    while True:
        try:
            return FastMCP(**kwargs)
        except TypeError as exc:
            message = str(exc).lower()
            if "unexpected keyword argument" not in message:
                raise

            removed_key = next((key for key in optional_keys if key in message and key in kwargs), None)
            if removed_key is None:
                raise
            kwargs.pop(removed_key, None)
            logger.debug(
                "FastMCP constructor does not support '%s'; using compatibility fallback.",
                removed_key,
            )


mcp = _build_fastmcp()

runtime_settings: RuntimeSettings | None = None
_engines: dict[str, BranchEngine] = {}

READ_ONLY_TOOL_ANNOTATIONS = {
    "readOnlyHint": True,
    "idempotentHint": True,
    "destructiveHint": False,
    "openWorldHint": False,
}

WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": False,
    "openWorldHint": False,
}

DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": True,
    "openWorldHint": False,
}

# talks to the remote
NETWORK_TOOL_ANNOTATIONS = {
    "readOnlyHint": False,
    "idempotentHint": False,
    "destructiveHint": False,
    "openWorldHint": True,
}

DirectoryParam = Annotated[str, Field(min_length=1, description="Path to the git repository root")]
BranchParam = Annotated[str, Field(min_length=1, max_length=255, description="Local branch name")]


def _register_tool(annotations: dict[str, bool]):
    """Register tool with annotations, falling back when the SDK lacks the kwarg."""

    def decorator(func):
        try:
            return mcp.tool(annotations=annotations)(func)
        except TypeError as exc:
            message = str(exc).lower()
            if "annotations" not in message and "unexpected keyword argument" not in message:
                raise
            logger.debug("FastMCP tool annotations not supported in this SDK version; using fallback.")
            return mcp.tool()(func)

    return decorator


def _engine_for(directory: str) -> BranchEngine:
    """Return the cached engine for *directory*, creating it on first use."""
    key = str(Path(directory).expanduser().resolve())
    engine = _engines.get(key)
    if engine is None:
        settings = runtime_settings or get_runtime_settings()
        engine = BranchEngine.for_repository(key, settings=settings)
        _engines[key] = engine
    return engine


def _error_payload_from_exception(exc: Exception) -> dict[str, Any]:
    """Convert internal exceptions into stable MCP error payloads."""
    if isinstance(exc, GBMError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check field constraints and request schema.",
            "details": {
                "errors": exc.errors(include_url=False, include_context=False, include_input=False)
            },
        }
    logger.exception("Unhandled server exception", exc_info=exc)
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Check server logs and retry the operation.",
        "details": {},
    }


def _build_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def _log_tool_phase(
    *,
    correlation_id: str,
    tool_name: str,
    phase: str,
    status: str,
    elapsed_seconds: float,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit structured phase-level diagnostics for tool execution."""
    payload: dict[str, Any] = {
        "event_type": "mcp_tool_phase",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "phase": phase,
        "status": status,
        "elapsed_ms": round(elapsed_seconds * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_tool_phase %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _run_tool(
    tool_name: str,
    directory: str,
    operation: Callable[[BranchEngine], Any],
) -> dict[str, Any]:
    """Resolve the engine, run *operation* and tag the payload with a correlation id."""
    total_start = time.perf_counter()
    correlation_id = _build_correlation_id()

    phase = "engine_resolution"
    phase_start = time.perf_counter()
    try:
        engine = _engine_for(directory)
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase=phase,
            status="ok",
            elapsed_seconds=time.perf_counter() - phase_start,
        )

        phase = "operation_execution"
        phase_start = time.perf_counter()
        response = operation(engine)
        payload = response.model_dump(mode="json") if hasattr(response, "model_dump") else dict(response)
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase=phase,
            status=payload.get("status", "ok"),
            elapsed_seconds=time.perf_counter() - phase_start,
            details={"error_code": payload["error_code"]} if payload.get("error_code") else None,
        )
    except Exception as exc:  # noqa: BLE001
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase=phase,
            status="error",
            elapsed_seconds=time.perf_counter() - phase_start,
            details={"exception": exc.__class__.__name__},
        )
        payload = _error_payload_from_exception(exc)

    payload["correlation_id"] = correlation_id
    _log_tool_phase(
        correlation_id=correlation_id,
        tool_name=tool_name,
        phase="total",
        status=payload.get("status", "error"),
        elapsed_seconds=time.perf_counter() - total_start,
    )
    return payload


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_repository_info(directory: DirectoryParam) -> dict[str, Any]:
    """Show the repository path, validity, target branch and remote."""
    return _run_tool("gbm_repository_info", directory, lambda engine: engine.get_repository())


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_set_target_branch(
    directory: DirectoryParam,
    name: BranchParam,
    persist: Annotated[bool, Field(description="Save to .git/gbm-config.yaml")] = False,
) -> dict[str, Any]:
    """Change the branch merge status is evaluated against."""
    return _run_tool(
        "gbm_set_target_branch",
        directory,
        lambda engine: engine.set_target_branch(name, persist=persist),
    )


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_list_branches(
    directory: DirectoryParam,
    view: Annotated[
        Literal["all", "starred", "recent"],
        Field(description="all branches, starred only, or most recently checked out"),
    ] = "all",
    limit: Annotated[int, Field(ge=1, le=200, description="Limit for the recent view")] = DEFAULT_RECENT_BRANCHES,
) -> dict[str, Any]:
    """List local branches merged with their stored metadata."""

    def _operation(engine: BranchEngine):
        if view == "starred":
            return engine.get_starred_branches()
        if view == "recent":
            return engine.get_recent_branches(limit)
        return engine.fetch_all_branches()

    return _run_tool("gbm_list_branches", directory, _operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_get_branch(directory: DirectoryParam, branch: BranchParam) -> dict[str, Any]:
    return _run_tool("gbm_get_branch", directory, lambda engine: engine.get_branch(branch))


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_current_branch(directory: DirectoryParam) -> dict[str, Any]:
    return _run_tool("gbm_current_branch", directory, lambda engine: engine.get_current_branch())


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_tree(directory: DirectoryParam) -> dict[str, Any]:
    """Group branches into directories by their slash-separated prefixes."""
    return _run_tool("gbm_tree", directory, lambda engine: engine.get_tree())


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_stats(directory: DirectoryParam) -> dict[str, Any]:
    return _run_tool("gbm_stats", directory, lambda engine: engine.get_stats())


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_recent_commits(
    directory: DirectoryParam,
    limit: Annotated[int, Field(ge=1, le=500, description="Number of commits")] = DEFAULT_RECENT_COMMITS,
) -> dict[str, Any]:
    """Recent commits on HEAD with ref badges and the fork point marked."""
    return _run_tool("gbm_recent_commits", directory, lambda engine: engine.fetch_recent_commits(limit))


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_checkout_history(directory: DirectoryParam) -> dict[str, Any]:
    return _run_tool("gbm_checkout_history", directory, lambda engine: engine.fetch_checkout_history())


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_checkout(directory: DirectoryParam, branch: BranchParam) -> dict[str, Any]:
    return _run_tool("gbm_checkout", directory, lambda engine: engine.checkout_branch(branch))


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_create_branch(
    directory: DirectoryParam,
    name: BranchParam,
    start_point: Annotated[str, Field(min_length=1, description="Branch, tag or commit to start from")] = "HEAD",
) -> dict[str, Any]:
    """Create a branch and check it out."""
    return _run_tool(
        "gbm_create_branch",
        directory,
        lambda engine: engine.create_branch(name, start_point=start_point),
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_rename_branch(directory: DirectoryParam, old_name: BranchParam, new_name: BranchParam) -> dict[str, Any]:
    return _run_tool(
        "gbm_rename_branch",
        directory,
        lambda engine: engine.rename_branch(old_name, new_name),
    )


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def gbm_delete_branch(
    directory: DirectoryParam,
    branch: BranchParam,
    force: Annotated[bool, Field(description="Delete even if not merged")] = False,
    remote: Annotated[bool, Field(description="Also delete the branch on the remote")] = False,
) -> dict[str, Any]:
    """Delete a local branch and its metadata record."""
    return _run_tool(
        "gbm_delete_branch",
        directory,
        lambda engine: engine.delete_branch(branch, force=force, remote=remote),
    )


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def gbm_delete_branches(
    directory: DirectoryParam,
    branches: Annotated[list[str], Field(min_length=1, max_length=200, description="Branch names")],
    force: Annotated[bool, Field(description="Delete even if not merged")] = False,
    remote: Annotated[bool, Field(description="Also delete the branches on the remote")] = False,
) -> dict[str, Any]:
    """Delete several branches; each is attempted independently."""
    return _run_tool(
        "gbm_delete_branches",
        directory,
        lambda engine: engine.delete_branches(branches, force=force, remote=remote),
    )


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_toggle_star(directory: DirectoryParam, branch: BranchParam) -> dict[str, Any]:
    return _run_tool("gbm_toggle_star", directory, lambda engine: engine.toggle_star(branch))


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_update_description(
    directory: DirectoryParam,
    branch: BranchParam,
    description: Annotated[str, Field(max_length=500, description="New description; empty clears it")],
) -> dict[str, Any]:
    return _run_tool(
        "gbm_update_description",
        directory,
        lambda engine: engine.update_description(branch, description),
    )


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_merged_branches(directory: DirectoryParam) -> dict[str, Any]:
    """Branches merged into the target branch, including squash merges.

    Spawns several git processes per branch; call on demand.
    """
    return _run_tool("gbm_merged_branches", directory, lambda engine: engine.compute_merged_set())


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_stale_remote_refs(
    directory: DirectoryParam,
    force: Annotated[bool, Field(description="Ignore the check interval and query git now")] = False,
) -> dict[str, Any]:
    return _run_tool(
        "gbm_stale_remote_refs",
        directory,
        lambda engine: engine.compute_stale_remote_refs(force=force),
    )


@_register_tool(NETWORK_TOOL_ANNOTATIONS)
def gbm_prune_remote(directory: DirectoryParam) -> dict[str, Any]:
    return _run_tool("gbm_prune_remote", directory, lambda engine: engine.prune_remote())


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_auto_prune(
    directory: DirectoryParam,
    enable: Annotated[bool, Field(description="Set fetch.prune=true; otherwise only read it")] = False,
) -> dict[str, Any]:
    return _run_tool(
        "gbm_auto_prune",
        directory,
        lambda engine: engine.enable_auto_prune() if enable else engine.get_auto_prune(),
    )


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_branch_patch(directory: DirectoryParam, branch: BranchParam) -> dict[str, Any]:
    """Diff of a branch against the target since their merge base."""
    return _run_tool("gbm_branch_patch", directory, lambda engine: engine.generate_branch_patch(branch))


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def gbm_apply_patch(
    directory: DirectoryParam,
    patch_file: Annotated[str, Field(min_length=1, description="Path to a unified diff file")],
) -> dict[str, Any]:
    return _run_tool("gbm_apply_patch", directory, lambda engine: engine.apply_patch_file(patch_file))


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def gbm_commit_diff(
    directory: DirectoryParam,
    commit_hash: Annotated[str, Field(min_length=4, max_length=64, description="Commit hash")],
) -> dict[str, Any]:
    return _run_tool("gbm_commit_diff", directory, lambda engine: engine.get_commit_diff(commit_hash))


@_register_tool(NETWORK_TOOL_ANNOTATIONS)
def gbm_pull(
    directory: DirectoryParam,
    branch: Annotated[str, Field(description="Branch to pull; empty pulls the current branch")] = "",
) -> dict[str, Any]:
    return _run_tool("gbm_pull", directory, lambda engine: engine.pull_branch(branch or None))


@_register_tool(NETWORK_TOOL_ANNOTATIONS)
def gbm_push(
    directory: DirectoryParam,
    branch: BranchParam,
    set_upstream: Annotated[bool, Field(description="Configure upstream tracking")] = False,
) -> dict[str, Any]:
    return _run_tool(
        "gbm_push",
        directory,
        lambda engine: engine.push_branch(branch, set_upstream=set_upstream),
    )


def main() -> None:
    """Run the GBM MCP server over stdio."""
    global runtime_settings

    parser = argparse.ArgumentParser(description="GBM MCP server")
    try:
        settings = get_runtime_settings()
    except ValueError as exc:
        parser.error(str(exc))
    parser.add_argument(
        "--log-level",
        choices=sorted(LOG_LEVELS),
        default=settings.log_level,
        help="Logging level (default: GBM_LOG_LEVEL or WARNING).",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate runtime configuration, print it as JSON and exit.",
    )
    args = parser.parse_args()

    runtime_settings = settings
    configure_logging(args.log_level)

    if args.check_config:
        print(json.dumps(asdict(settings), indent=2, sort_keys=True))
        return

    logger.info("Starting GBM MCP server (repo default: %s)", settings.repo_path)
    mcp.run()


if __name__ == "__main__":
    main()
