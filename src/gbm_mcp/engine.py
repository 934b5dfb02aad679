"""Core GBM engine implementing all branch operations for one repository."""

from __future__ import annotations

import functools
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypeVar

from .constants import (
    BRANCH_LIST_FORMAT,
    COMMIT_LOG_FORMAT,
    DEFAULT_RECENT_BRANCHES,
    DEFAULT_RECENT_COMMITS,
    GIT_DIR_NAME,
    RECENTLY_USED_DAYS,
    REFLOG_FORMAT,
)
from .errors import ErrorCode, GBMError
from .file_manager import FileManager
from .merge_detector import MergeDetector
from .metadata_store import MetadataStore
from .models import (
    ApplyPatchResponse,
    AutoPruneResponse,
    BaseToolResponse,
    Branch,
    BranchActionResponse,
    BranchListResponse,
    BranchResponse,
    BranchWithMetadata,
    BulkDeleteResponse,
    CheckoutEntry,
    CheckoutHistoryResponse,
    CommitDiffResponse,
    CommitListResponse,
    FailedDeletion,
    MergedBranchesResponse,
    PatchResponse,
    PruneResponse,
    RepositoryResponse,
    StaleRefsResponse,
    StatsResponse,
    TreeResponse,
)
from .parser import (
    parse_branch_list,
    parse_commit_log,
    parse_prune_output,
    parse_reflog,
    parse_timestamp,
)
from .process import ProcessRunner
from .runtime import (
    RuntimeSettings,
    get_runtime_settings,
    load_repo_settings,
    save_repo_settings,
    validate_remote_name,
)
from .tree import build_tree

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseToolResponse)

FORBIDDEN_BRANCH_CHARS = set("~^:*?[\\")
CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x1f\x7f]")
COMMIT_HASH_PATTERN = re.compile(r"^[0-9a-fA-F]{4,64}$")
PATCH_HEADER_PATTERN = re.compile(r"^(diff --git |--- |\+\+\+ )", re.MULTILINE)
MAX_DESCRIPTION_LENGTH = 500
MAX_COMMIT_LIMIT = 500


def validate_branch_name(value: str, field_name: str = "branch") -> str:
    """Check *value* against git's ref-name rules before any process is spawned."""
    name = str(value)
    problem = ""
    if not name:
        problem = "is required"
    elif any(char.isspace() for char in name):
        problem = "cannot contain whitespace"
    elif CONTROL_CHAR_PATTERN.search(name):
        problem = "cannot contain control characters"
    elif FORBIDDEN_BRANCH_CHARS.intersection(name):
        problem = "contains invalid characters (~ ^ : * ? [ \\)"
    elif name.startswith("-"):
        problem = "cannot start with '-'"
    elif ".." in name or "//" in name or "@{" in name:
        problem = "cannot contain '..', '//' or '@{'"
    elif name.startswith("/") or name.endswith(("/", ".", ".lock")):
        problem = "cannot start with '/' or end with '/', '.' or '.lock'"
    if problem:
        raise GBMError(
            ErrorCode.INVALID_BRANCH_NAME,
            f"Invalid {field_name} name '{value}': {problem}",
            "Use a git-compatible branch name such as 'feature/login'.",
            {"field": field_name, "value": name},
        )
    return name


def _operation(response_cls: type[ResponseT]) -> Callable[[Callable[..., ResponseT]], Callable[..., ResponseT]]:
    """Return ``GBMError`` raised inside an operation as an error response."""

    def decorator(func: Callable[..., ResponseT]) -> Callable[..., ResponseT]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> ResponseT:
            try:
                return func(*args, **kwargs)
            except GBMError as exc:
                logger.info("%s failed: [%s] %s", func.__name__, exc.code.value, exc.message)
                return response_cls.model_validate(exc.to_payload())

        return wrapper

    return decorator


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BranchEngine:
    """Branch operations bound to one repository root.

    Every public operation returns a response model; failures come back with
    ``status="error"`` instead of raising.
    """

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        file_manager: FileManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.file_manager = file_manager or FileManager()
        self._clock = clock or _utc_now
        self._bind(settings or get_runtime_settings())

    @classmethod
    def for_repository(
        cls,
        repo_path: str | Path,
        target_branch: str | None = None,
        remote: str | None = None,
        settings: RuntimeSettings | None = None,
        **kwargs: Any,
    ) -> "BranchEngine":
        """Build an engine for *repo_path*: environment, then repository file, then arguments."""
        if remote:
            validate_remote_name(remote, "remote")
        base = replace(settings or get_runtime_settings(), repo_path=str(repo_path))
        base = _overlay_repo_settings(base, kwargs.get("file_manager"))
        overrides = {
            key: value
            for key, value in (("target_branch", target_branch), ("remote", remote))
            if value
        }
        return cls(replace(base, **overrides), **kwargs)

    def _bind(self, settings: RuntimeSettings) -> None:
        self.settings = settings
        self.repo_path = Path(settings.repo_path).expanduser()
        self.runner = ProcessRunner(self.repo_path, timeout=settings.git_timeout_seconds)
        self.store = MetadataStore(
            self.repo_path,
            file_manager=self.file_manager,
            cache_ttl=settings.cache_ttl_seconds,
            clock=self._clock,
        )
        self.detector = MergeDetector(self.runner)

    @property
    def target_branch(self) -> str:
        return self.settings.target_branch

    @property
    def remote(self) -> str:
        return self.settings.remote

    # ------------------------------------------------------------------
    # repository configuration
    # ------------------------------------------------------------------

    @staticmethod
    def validate_repo_path(path: str | Path) -> bool:
        return (Path(path).expanduser() / GIT_DIR_NAME).exists()

    def get_repository(self) -> RepositoryResponse:
        return self._repository_response("Repository settings retrieved")

    @_operation(RepositoryResponse)
    def set_repo_path(self, path: str) -> RepositoryResponse:
        """Point the engine at another repository and reconcile its metadata."""
        if not self.validate_repo_path(path):
            raise GBMError(
                ErrorCode.NOT_A_REPOSITORY,
                f"Path is not a git repository: {path}",
                "Choose a directory that contains a .git entry.",
                {"repo_path": str(path)},
            )
        settings = _overlay_repo_settings(
            replace(self.settings, repo_path=str(path)), self.file_manager
        )
        self._bind(settings)
        logger.info("Repository path updated to %s", self.repo_path)
        self.store.reconcile(branch.name for branch in self._list_branches())
        return self._repository_response(f"Repository set to {self.repo_path}")

    @_operation(RepositoryResponse)
    def set_target_branch(self, name: str, persist: bool = False) -> RepositoryResponse:
        target = validate_branch_name(name, field_name="target branch")
        self.settings = replace(self.settings, target_branch=target)
        if persist:
            self._require_repository()
            save_repo_settings(self.repo_path, {"target_branch": target}, self.file_manager)
        logger.info("Target branch updated to %s", target)
        return self._repository_response(f"Target branch set to '{target}'")

    def _repository_response(self, message: str) -> RepositoryResponse:
        return RepositoryResponse(
            status="success",
            message=message,
            repo_path=str(self.repo_path),
            valid=self.runner.is_repository(),
            target_branch=self.target_branch,
            remote=self.remote,
        )

    # ------------------------------------------------------------------
    # branch listing and views
    # ------------------------------------------------------------------

    @_operation(BranchListResponse)
    def fetch_all_branches(self) -> BranchListResponse:
        """List local branches merged with their metadata.

        An invalid repository path yields an empty list, not an error.
        """
        if not self.runner.is_repository():
            logger.warning("Configured repository is not valid: %s", self.repo_path)
            return BranchListResponse(
                status="success",
                message=f"Not a git repository: {self.repo_path}",
                repository_valid=False,
            )

        branches = self._merged_branches()
        current = next((branch.name for branch in branches if branch.current), "")
        return BranchListResponse(
            status="success",
            message="Branches listed",
            current_branch=current,
            count=len(branches),
            branches=branches,
        )

    @_operation(BranchResponse)
    def get_branch(self, name: str) -> BranchResponse:
        branch_name = validate_branch_name(name)
        for branch in self._merged_branches():
            if branch.name == branch_name:
                return BranchResponse(status="success", message="Branch found", branch=branch)
        raise self._not_found(branch_name)

    @_operation(BranchResponse)
    def get_current_branch(self) -> BranchResponse:
        for branch in self._merged_branches():
            if branch.current:
                return BranchResponse(status="success", message="Current branch found", branch=branch)
        raise GBMError(
            ErrorCode.BRANCH_NOT_FOUND,
            "No current branch found",
            "HEAD may be detached; check out a branch first.",
        )

    @_operation(BranchListResponse)
    def get_recent_branches(self, limit: int = DEFAULT_RECENT_BRANCHES) -> BranchListResponse:
        """Branches with a known checkout time, most recent first."""
        self._require_repository()
        branches = [branch for branch in self._merged_branches() if branch.last_checked_out]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        branches.sort(
            key=lambda branch: parse_timestamp(branch.last_checked_out) or oldest,
            reverse=True,
        )
        selected = branches[: max(0, int(limit))]
        return BranchListResponse(
            status="success",
            message="Recent branches listed",
            current_branch=next((b.name for b in selected if b.current), ""),
            count=len(selected),
            branches=selected,
        )

    @_operation(BranchListResponse)
    def get_starred_branches(self) -> BranchListResponse:
        self._require_repository()
        starred = [branch for branch in self._merged_branches() if branch.starred]
        return BranchListResponse(
            status="success",
            message="Starred branches listed",
            current_branch=next((b.name for b in starred if b.current), ""),
            count=len(starred),
            branches=starred,
        )

    @_operation(TreeResponse)
    def get_tree(self) -> TreeResponse:
        if not self.runner.is_repository():
            return TreeResponse(status="success", message=f"Not a git repository: {self.repo_path}")
        tree = build_tree(self._merged_branches())
        return TreeResponse(status="success", message="Branch tree built", tree=tree)

    @_operation(StatsResponse)
    def get_stats(self) -> StatsResponse:
        self._require_repository()
        branches = self._merged_branches()
        metadata = self.store.get_all()
        cutoff = self._clock() - timedelta(days=RECENTLY_USED_DAYS)

        recently_used = 0
        for record in metadata.values():
            checked_out = parse_timestamp(record.last_checked_out)
            if checked_out is not None and checked_out > cutoff:
                recently_used += 1

        return StatsResponse(
            status="success",
            message="Statistics computed",
            total_branches=len(metadata),
            starred_branches=sum(1 for record in metadata.values() if record.starred),
            with_description=sum(1 for record in metadata.values() if record.description),
            recently_used=recently_used,
            total_git_branches=len(branches),
            current_branch=next((branch.name for branch in branches if branch.current), None),
        )

    def _list_branches(self) -> list[Branch]:
        result = self.runner.run(["branch", f"--format={BRANCH_LIST_FORMAT}"])
        if not result.success:
            raise result.to_error("list branches")
        return parse_branch_list(result.stdout)

    def _merged_branches(self) -> list[BranchWithMetadata]:
        """List branches, reconcile the store with them, and merge metadata in."""
        branches = self._list_branches()
        try:
            self.store.reconcile(branch.name for branch in branches)
            if self.settings.sync_reflog:
                self.store.sync_checkout_history(self._checkout_history())
        except GBMError as exc:
            # metadata is best-effort; listing still succeeds
            logger.warning("Metadata sync failed: %s", exc.message)
        metadata = self.store.get_all()
        return [BranchWithMetadata.combine(branch, metadata.get(branch.name)) for branch in branches]

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    @_operation(CommitListResponse)
    def fetch_recent_commits(self, limit: int = DEFAULT_RECENT_COMMITS) -> CommitListResponse:
        count = int(limit)
        if not 1 <= count <= MAX_COMMIT_LIMIT:
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"limit must be between 1 and {MAX_COMMIT_LIMIT}",
                "Pass a smaller positive limit.",
                {"limit": limit},
            )
        self._require_repository()
        result = self.runner.run(["log", "-n", str(count), f"--format={COMMIT_LOG_FORMAT}"])
        if not result.success:
            raise result.to_error("read commit log")
        commits = parse_commit_log(result.stdout, remote=self.remote)

        fork_point = self.detector.merge_base("HEAD", self.target_branch)
        if fork_point:
            for commit in commits:
                if fork_point.startswith(commit.hash):
                    commit.is_fork_point = True

        return CommitListResponse(
            status="success",
            message="Recent commits listed",
            count=len(commits),
            commits=commits,
        )

    @_operation(CheckoutHistoryResponse)
    def fetch_checkout_history(self) -> CheckoutHistoryResponse:
        self._require_repository()
        entries = self._checkout_history()
        return CheckoutHistoryResponse(
            status="success",
            message="Checkout history read",
            count=len(entries),
            entries=entries,
        )

    def _checkout_history(self) -> list[CheckoutEntry]:
        result = self.runner.run(["reflog", f"--format={REFLOG_FORMAT}", "--date=iso"])
        if not result.success:
            return []
        return parse_reflog(result.stdout)

    # ------------------------------------------------------------------
    # branch mutations
    # ------------------------------------------------------------------

    @_operation(BranchActionResponse)
    def checkout_branch(self, name: str) -> BranchActionResponse:
        branch_name = validate_branch_name(name)
        self._require_branch(branch_name)
        self._run_or_raise(["checkout", branch_name, "--"], f"checkout branch '{branch_name}'", branch_name)
        metadata = self.store.record_checkout(branch_name)
        return BranchActionResponse(
            status="success",
            message=f"Switched to branch '{branch_name}'",
            branch=branch_name,
            metadata=metadata,
        )

    @_operation(BranchActionResponse)
    def create_branch(self, name: str, start_point: str = "HEAD") -> BranchActionResponse:
        branch_name = validate_branch_name(name)
        start = self._validate_start_point(start_point)
        self._require_repository()
        self._run_or_raise(
            ["checkout", "-b", branch_name, start],
            f"create branch '{branch_name}'",
            branch_name,
        )
        metadata = self.store.record_checkout(branch_name)
        return BranchActionResponse(
            status="success",
            message=f"Branch '{branch_name}' created from '{start}'",
            branch=branch_name,
            metadata=metadata,
        )

    @_operation(BranchActionResponse)
    def rename_branch(self, old_name: str, new_name: str) -> BranchActionResponse:
        source = validate_branch_name(old_name, field_name="old branch")
        target = validate_branch_name(new_name, field_name="new branch")
        self._require_branch(source)
        self._run_or_raise(
            ["branch", "-m", source, target],
            f"rename branch '{source}' to '{target}'",
            source,
        )
        self.store.rename(source, target)
        return BranchActionResponse(
            status="success",
            message=f"Branch '{source}' renamed to '{target}'",
            branch=source,
            new_name=target,
            metadata=self.store.get(target),
        )

    @_operation(BranchActionResponse)
    def delete_branch(self, name: str, force: bool = False, remote: bool = False) -> BranchActionResponse:
        """Delete a local branch; optionally also its counterpart on the remote.

        A failed remote delete is logged and reported, not fatal.
        """
        branch_name = validate_branch_name(name)
        self._require_branch(branch_name)
        flag = "-D" if force else "-d"
        self._run_or_raise(["branch", flag, branch_name], f"delete branch '{branch_name}'", branch_name)
        self.store.delete(branch_name)

        remote_deleted: bool | None = None
        message = f"Branch '{branch_name}' deleted"
        if remote:
            result = self.runner.run(["push", self.remote, "--delete", branch_name])
            remote_deleted = result.success
            if not result.success:
                logger.warning(
                    "Failed to delete remote branch '%s' on %s: %s",
                    branch_name,
                    self.remote,
                    result.stderr.strip(),
                )
                message += f"; remote delete on '{self.remote}' failed"

        return BranchActionResponse(
            status="success",
            message=message,
            branch=branch_name,
            remote_deleted=remote_deleted,
        )

    def delete_branches(
        self,
        names: Sequence[str],
        force: bool = False,
        remote: bool = False,
    ) -> BulkDeleteResponse:
        """Attempt every deletion independently and report both outcomes."""
        deleted: list[str] = []
        failed: list[FailedDeletion] = []
        for name in names:
            response = self.delete_branch(name, force=force, remote=remote)
            if response.status == "success":
                deleted.append(response.branch)
            else:
                failed.append(FailedDeletion(name=str(name), message=response.message))

        if failed:
            return BulkDeleteResponse(
                status="error",
                message=f"Deleted {len(deleted)} of {len(names)} branches",
                error_code=ErrorCode.PROCESS_FAILURE.value,
                suggestion="Inspect failed[].message; retry with force for unmerged branches.",
                deleted=deleted,
                failed=failed,
            )
        return BulkDeleteResponse(
            status="success",
            message=f"Deleted {len(deleted)} branches",
            deleted=deleted,
        )

    @_operation(BranchActionResponse)
    def pull_branch(self, name: str | None = None) -> BranchActionResponse:
        self._require_repository()
        args = ["pull"]
        label = "current"
        if name:
            label = validate_branch_name(name)
            args.extend([self.remote, label])
        self._run_or_raise(args, f"pull branch '{label}'", label)
        return BranchActionResponse(status="success", message=f"Pulled '{label}'", branch=label)

    @_operation(BranchActionResponse)
    def push_branch(self, name: str, set_upstream: bool = False) -> BranchActionResponse:
        branch_name = validate_branch_name(name)
        self._require_branch(branch_name)
        args = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend([self.remote, branch_name])
        self._run_or_raise(args, f"push branch '{branch_name}'", branch_name)
        return BranchActionResponse(
            status="success",
            message=f"Pushed '{branch_name}' to '{self.remote}'",
            branch=branch_name,
        )

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------

    @_operation(BranchActionResponse)
    def toggle_star(self, name: str) -> BranchActionResponse:
        branch_name = validate_branch_name(name)
        self._require_branch(branch_name)
        metadata = self.store.toggle_star(branch_name)
        state = "starred" if metadata.starred else "unstarred"
        return BranchActionResponse(
            status="success",
            message=f"Branch '{branch_name}' {state}",
            branch=branch_name,
            metadata=metadata,
        )

    @_operation(BranchActionResponse)
    def update_description(self, name: str, description: str) -> BranchActionResponse:
        branch_name = validate_branch_name(name)
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters",
                "Shorten the description.",
                {"length": len(description)},
            )
        self._require_branch(branch_name)
        metadata = self.store.update_description(branch_name, description)
        return BranchActionResponse(
            status="success",
            message=f"Description updated for '{branch_name}'",
            branch=branch_name,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # merge analysis and remote housekeeping
    # ------------------------------------------------------------------

    @_operation(MergedBranchesResponse)
    def compute_merged_set(self) -> MergedBranchesResponse:
        """Branches already merged into the target, plainly or by squash."""
        self._require_repository()
        target = self.target_branch
        if not self.runner.run(["rev-parse", "--verify", "--quiet", f"{target}^{{commit}}"]).success:
            raise GBMError(
                ErrorCode.BRANCH_NOT_FOUND,
                f"Target branch '{target}' not found",
                "Set an existing target branch first.",
                {"branch": target},
            )
        current = self._current_branch_name()
        names = [branch.name for branch in self._list_branches()]
        analysis = self.detector.analyze(target, current, names)
        return MergedBranchesResponse(
            status="success",
            message=f"{len(analysis.merged)} branches merged into '{target}'",
            target_branch=target,
            current_branch=current or "",
            merged=sorted(analysis.merged),
            trivial=sorted(analysis.trivial),
            squashed=sorted(analysis.squashed),
        )

    @_operation(StaleRefsResponse)
    def compute_stale_remote_refs(self, force: bool = False) -> StaleRefsResponse:
        """Dry-run prune, throttled by the stored last-check time."""
        self._require_repository()
        meta = self.store.get_prune_meta()
        last_checked = parse_timestamp(meta.last_checked)
        interval = timedelta(seconds=self.settings.prune_check_interval_seconds)
        if not force and last_checked is not None and self._clock() - last_checked < interval:
            return StaleRefsResponse(
                status="success",
                message="Using cached stale-ref count",
                remote=self.remote,
                count=meta.stale_count,
                checked_at=meta.last_checked or "",
                cached=True,
            )

        result = self.runner.run(["remote", "prune", "--dry-run", self.remote])
        if not result.success:
            raise result.to_error(f"check stale refs on '{self.remote}'", {"remote": self.remote})
        refs = parse_prune_output(result.stdout + "\n" + result.stderr)
        updated = self.store.set_prune_meta(len(refs))
        return StaleRefsResponse(
            status="success",
            message=f"{len(refs)} stale remote refs",
            remote=self.remote,
            count=len(refs),
            stale_refs=refs,
            checked_at=updated.last_checked or "",
        )

    @_operation(PruneResponse)
    def prune_remote(self) -> PruneResponse:
        self._require_repository()
        result = self.runner.run(["remote", "prune", self.remote])
        if not result.success:
            raise result.to_error(f"prune '{self.remote}'", {"remote": self.remote})
        pruned = parse_prune_output(result.stdout + "\n" + result.stderr)
        self.store.set_prune_meta(0)
        return PruneResponse(
            status="success",
            message=f"Pruned {len(pruned)} refs from '{self.remote}'",
            remote=self.remote,
            count=len(pruned),
            pruned=pruned,
        )

    @_operation(AutoPruneResponse)
    def enable_auto_prune(self) -> AutoPruneResponse:
        self._require_repository()
        result = self.runner.run(["config", "fetch.prune", "true"])
        if not result.success:
            raise result.to_error("enable fetch.prune")
        return AutoPruneResponse(status="success", message="fetch.prune enabled", enabled=True)

    @_operation(AutoPruneResponse)
    def get_auto_prune(self) -> AutoPruneResponse:
        self._require_repository()
        result = self.runner.run(["config", "--get", "fetch.prune"])
        # exit code 1 means the key is unset
        enabled = result.success and result.stdout.strip().lower() == "true"
        return AutoPruneResponse(status="success", message="fetch.prune read", enabled=enabled)

    # ------------------------------------------------------------------
    # patches and diffs
    # ------------------------------------------------------------------

    @_operation(PatchResponse)
    def generate_branch_patch(self, name: str) -> PatchResponse:
        """Diff of *name* against the target since their merge base."""
        branch_name = validate_branch_name(name)
        self._require_branch(branch_name)
        target = self.target_branch
        result = self.runner.run(
            ["diff", "--no-color", "--binary", f"{target}...{branch_name}", "--"]
        )
        if not result.success:
            raise result.to_error(
                f"generate patch for '{branch_name}'",
                {"branch": branch_name, "target_branch": target},
            )
        return PatchResponse(
            status="success",
            message=f"Patch of '{branch_name}' against '{target}'",
            branch=branch_name,
            target_branch=target,
            patch=result.stdout,
        )

    @_operation(ApplyPatchResponse)
    def apply_patch_file(self, patch_path: str) -> ApplyPatchResponse:
        self._require_repository()
        path = Path(patch_path).expanduser()
        if not path.is_absolute():
            path = self.repo_path / path
        path = path.resolve()
        self._validate_patch_content(self.file_manager.read_text(path))

        self._run_or_raise(["apply", "--check", str(path)], "validate patch", details={"patch_file": str(path)})
        self._run_or_raise(["apply", str(path)], "apply patch", details={"patch_file": str(path)})
        return ApplyPatchResponse(status="success", message="Patch applied", patch_file=str(path))

    @_operation(CommitDiffResponse)
    def get_commit_diff(self, commit_hash: str) -> CommitDiffResponse:
        value = str(commit_hash).strip()
        if not COMMIT_HASH_PATTERN.fullmatch(value):
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"Invalid commit hash '{commit_hash}'",
                "Pass a 4 to 64 character hexadecimal commit id.",
                {"hash": str(commit_hash)},
            )
        self._require_repository()
        result = self.runner.run(["show", "--no-color", "--format=", "--patch", value, "--"])
        if not result.success:
            raise result.to_error(f"read diff of {value}", {"hash": value})
        return CommitDiffResponse(status="success", message="Commit diff read", hash=value, diff=result.stdout)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _require_repository(self) -> None:
        if not self.runner.is_repository():
            raise GBMError(
                ErrorCode.NOT_A_REPOSITORY,
                f"Not a git repository: {self.repo_path}",
                "Point the repository path at a directory containing .git.",
                {"repo_path": str(self.repo_path)},
            )

    def _require_branch(self, name: str) -> None:
        self._require_repository()
        result = self.runner.run(["show-ref", "--verify", "--quiet", f"refs/heads/{name}"])
        if result.success:
            return
        if result.error_code in (ErrorCode.TIMEOUT, ErrorCode.NOT_A_REPOSITORY):
            raise result.to_error(f"look up branch '{name}'", {"branch": name})
        raise self._not_found(name)

    def _not_found(self, name: str) -> GBMError:
        return GBMError(
            ErrorCode.BRANCH_NOT_FOUND,
            f"Branch '{name}' not found",
            "List branches to check the name.",
            {"branch": name},
        )

    def _current_branch_name(self) -> str | None:
        result = self.runner.run(["branch", "--show-current"])
        if not result.success:
            return None
        return result.stdout.strip() or None

    def _run_or_raise(
        self,
        args: list[str],
        action: str,
        branch: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str:
        result = self.runner.run(args)
        if not result.success:
            payload = dict(details or {})
            if branch is not None:
                payload["branch"] = branch
            raise result.to_error(action, payload)
        return result.stdout

    def _validate_start_point(self, value: str) -> str:
        start = str(value)
        if (
            not start
            or start.startswith("-")
            or any(char.isspace() for char in start)
            or CONTROL_CHAR_PATTERN.search(start)
        ):
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                f"Invalid start point '{value}'",
                "Use a branch name, tag or commit hash.",
                {"start_point": start},
            )
        return start

    def _validate_patch_content(self, content: str) -> None:
        if not content.strip():
            raise GBMError(ErrorCode.INVALID_INPUT, "Patch file is empty", "Provide a non-empty patch.")
        if "\x00" in content:
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                "Patch contains NUL bytes",
                "Generate the patch with --binary instead of raw binary content.",
            )
        if not PATCH_HEADER_PATTERN.search(content):
            raise GBMError(
                ErrorCode.INVALID_INPUT,
                "File does not look like a unified diff",
                "Provide output of `git diff` or `git format-patch`.",
            )


def _overlay_repo_settings(settings: RuntimeSettings, file_manager: FileManager | None) -> RuntimeSettings:
    try:
        return load_repo_settings(settings, file_manager)
    except (GBMError, ValueError) as exc:
        logger.warning("Ignoring repository settings file: %s", exc)
        return settings
