"""Pydantic models for GBM records, tree nodes and operation responses."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Branch(BaseModel):
    """One local branch as reported by the branch listing."""

    name: str
    hash: str
    current: bool = False
    message: str = ""
    author: str = ""
    date: str = ""
    ahead: int | None = None
    behind: int | None = None
    tracking: str | None = None
    upstream: str | None = None


class BranchMetadata(BaseModel):
    """Persisted per-branch record; on disk keys use the camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    starred: bool = False
    description: str | None = None
    last_checked_out: str | None = Field(default=None, alias="lastCheckedOut")
    checkout_count: int = Field(default=0, ge=0, alias="checkoutCount")


class BranchWithMetadata(Branch):
    starred: bool = False
    description: str | None = None
    last_checked_out: str | None = None
    checkout_count: int = 0

    @classmethod
    def combine(cls, branch: Branch, metadata: BranchMetadata | None) -> "BranchWithMetadata":
        payload = branch.model_dump()
        if metadata is not None:
            payload.update(metadata.model_dump())
        return cls(**payload)


class RefBadge(BaseModel):
    name: str
    type: Literal["branch", "remote", "tag"]
    synced: bool = False


class Commit(BaseModel):
    hash: str
    message: str = ""
    relative_date: str = ""
    refs: list[RefBadge] = Field(default_factory=list)
    is_fork_point: bool = False


class CheckoutEntry(BaseModel):
    branch: str
    date: str


class PruneMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_checked: str | None = Field(default=None, alias="lastChecked")
    stale_count: int = Field(default=0, ge=0, alias="staleCount")


class BranchLeafNode(BaseModel):
    kind: Literal["branch"] = "branch"
    path: str
    branch: BranchWithMetadata


class DirectoryNode(BaseModel):
    kind: Literal["dir"] = "dir"
    path: str
    label: str
    children: list["TreeNode"] = Field(default_factory=list)
    branch_count: int = 0
    has_current_branch: bool = False


TreeNode = Annotated[Union[DirectoryNode, BranchLeafNode], Field(discriminator="kind")]


class BranchTree(BaseModel):
    roots: list[TreeNode] = Field(default_factory=list)
    total_branches: int = 0


DirectoryNode.model_rebuild()
BranchTree.model_rebuild()


class FailedDeletion(BaseModel):
    name: str
    message: str


class BaseToolResponse(BaseModel):
    status: Literal["success", "error"]
    message: str = ""
    error_code: str = ""
    suggestion: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


class RepositoryResponse(BaseToolResponse):
    repo_path: str = ""
    valid: bool = False
    target_branch: str = ""
    remote: str = ""


class BranchListResponse(BaseToolResponse):
    repository_valid: bool = True
    current_branch: str = ""
    count: int = 0
    branches: list[BranchWithMetadata] = Field(default_factory=list)


class BranchResponse(BaseToolResponse):
    branch: BranchWithMetadata | None = None


class BranchActionResponse(BaseToolResponse):
    branch: str = ""
    new_name: str = ""
    remote_deleted: bool | None = None
    metadata: BranchMetadata | None = None


class BulkDeleteResponse(BaseToolResponse):
    deleted: list[str] = Field(default_factory=list)
    failed: list[FailedDeletion] = Field(default_factory=list)


class CommitListResponse(BaseToolResponse):
    count: int = 0
    commits: list[Commit] = Field(default_factory=list)


class CheckoutHistoryResponse(BaseToolResponse):
    count: int = 0
    entries: list[CheckoutEntry] = Field(default_factory=list)


class MergedBranchesResponse(BaseToolResponse):
    target_branch: str = ""
    current_branch: str = ""
    merged: list[str] = Field(default_factory=list)
    trivial: list[str] = Field(default_factory=list)
    squashed: list[str] = Field(default_factory=list)


class StaleRefsResponse(BaseToolResponse):
    remote: str = ""
    count: int = 0
    stale_refs: list[str] = Field(default_factory=list)
    checked_at: str = ""
    cached: bool = False


class PruneResponse(BaseToolResponse):
    remote: str = ""
    count: int = 0
    pruned: list[str] = Field(default_factory=list)


class AutoPruneResponse(BaseToolResponse):
    enabled: bool = False


class PatchResponse(BaseToolResponse):
    branch: str = ""
    target_branch: str = ""
    patch: str = ""


class ApplyPatchResponse(BaseToolResponse):
    patch_file: str = ""


class CommitDiffResponse(BaseToolResponse):
    hash: str = ""
    diff: str = ""


class TreeResponse(BaseToolResponse):
    tree: BranchTree = Field(default_factory=BranchTree)


class StatsResponse(BaseToolResponse):
    total_branches: int = 0
    starred_branches: int = 0
    with_description: int = 0
    recently_used: int = 0
    total_git_branches: int = 0
    current_branch: str | None = None
