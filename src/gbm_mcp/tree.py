"""Build a directory-style tree from slash-separated branch names."""

from __future__ import annotations

from collections.abc import Sequence

from .constants import PATH_SEPARATOR
from .models import Branch, BranchLeafNode, BranchTree, BranchWithMetadata, DirectoryNode, TreeNode
from .parser import name_sort_key


def build_tree(branches: Sequence[Branch]) -> BranchTree:
    """Group branches into directory nodes keyed by path prefix.

    Directory paths end with the separator (``feature/``). Every directory
    lists its sub-directories alphabetically, then its branches in input
    order. The root follows the same rule.
    """
    directories: dict[str, DirectoryNode] = {}
    root_directories: list[str] = []
    root_leaves: list[BranchLeafNode] = []

    def ensure_directory(path: str) -> DirectoryNode:
        node = directories.get(path)
        if node is not None:
            return node
        segments = path[: -len(PATH_SEPARATOR)].split(PATH_SEPARATOR)
        node = DirectoryNode(path=path, label=segments[-1])
        directories[path] = node
        if len(segments) > 1:
            parent_path = PATH_SEPARATOR.join(segments[:-1]) + PATH_SEPARATOR
            ensure_directory(parent_path).children.append(node)
        else:
            root_directories.append(path)
        return node

    for branch in branches:
        if not isinstance(branch, BranchWithMetadata):
            branch = BranchWithMetadata.combine(branch, None)
        leaf = BranchLeafNode(path=branch.name, branch=branch)
        segments = branch.name.split(PATH_SEPARATOR)
        if len(segments) == 1:
            root_leaves.append(leaf)
            continue
        parent_path = PATH_SEPARATOR.join(segments[:-1]) + PATH_SEPARATOR
        ensure_directory(parent_path).children.append(leaf)

    for node in directories.values():
        node.children = _ordered_children(node.children)

    roots: list[TreeNode] = [
        directories[path] for path in sorted(root_directories, key=name_sort_key)
    ]
    roots.extend(root_leaves)

    for node in roots:
        _aggregate(node)

    return BranchTree(roots=roots, total_branches=len(branches))


def _ordered_children(children: list[TreeNode]) -> list[TreeNode]:
    subdirectories = sorted(
        (child for child in children if isinstance(child, DirectoryNode)),
        key=lambda child: name_sort_key(child.label),
    )
    leaves = [child for child in children if isinstance(child, BranchLeafNode)]
    return [*subdirectories, *leaves]


def _aggregate(node: TreeNode) -> tuple[int, bool]:
    if isinstance(node, BranchLeafNode):
        return 1, node.branch.current
    count = 0
    has_current = False
    for child in node.children:
        child_count, child_current = _aggregate(child)
        count += child_count
        has_current = has_current or child_current
    node.branch_count = count
    node.has_current_branch = has_current
    return count, has_current


def node_key(node: TreeNode) -> str:
    if isinstance(node, BranchLeafNode):
        return node.branch.name
    return node.path


def find_node_and_parent(
    roots: Sequence[TreeNode],
    key: str,
) -> tuple[TreeNode, DirectoryNode | None] | None:
    """Locate a node by branch name or directory path, with its parent."""

    def search(nodes: Sequence[TreeNode], parent: DirectoryNode | None):
        for node in nodes:
            if node_key(node) == key:
                return node, parent
            if isinstance(node, DirectoryNode):
                found = search(node.children, node)
                if found is not None:
                    return found
        return None

    return search(roots, None)


def ancestor_paths(roots: Sequence[TreeNode], branch_name: str) -> list[str]:
    """Directory paths, outermost first, that contain *branch_name*."""

    def search(nodes: Sequence[TreeNode], trail: list[str]) -> list[str] | None:
        for node in nodes:
            if isinstance(node, BranchLeafNode):
                if node.branch.name == branch_name:
                    return trail
            else:
                found = search(node.children, [*trail, node.path])
                if found is not None:
                    return found
        return None

    return search(roots, []) or []

