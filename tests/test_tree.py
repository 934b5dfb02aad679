from __future__ import annotations

from gbm_mcp.models import Branch, BranchLeafNode, BranchWithMetadata, DirectoryNode
from gbm_mcp.tree import ancestor_paths, build_tree, find_node_and_parent, node_key


def _branches(*names: str, current: str = "") -> list[Branch]:
    return [Branch(name=name, hash=f"h{index}", current=name == current) for index, name in enumerate(names)]


def test_build_tree_groups_by_prefix() -> None:
    tree = build_tree(_branches("a/b", "a/c", "d"))

    assert tree.total_branches == 3
    assert len(tree.roots) == 2
    directory, leaf = tree.roots
    assert isinstance(directory, DirectoryNode)
    assert directory.path == "a/"
    assert directory.label == "a"
    assert directory.branch_count == 2
    assert [node_key(child) for child in directory.children] == ["a/b", "a/c"]
    assert isinstance(leaf, BranchLeafNode)
    assert leaf.branch.name == "d"


def test_build_tree_orders_directories_before_leaves() -> None:
    tree = build_tree(
        _branches("z/1", "feature/x/y", "feature/b", "feature/a/q", "Alpha/k", "main", "dev")
    )

    assert [node_key(node) for node in tree.roots] == ["Alpha/", "feature/", "z/", "main", "dev"]
    feature = tree.roots[1]
    assert isinstance(feature, DirectoryNode)
    assert [node_key(child) for child in feature.children] == ["feature/a/", "feature/x/", "feature/b"]
    assert feature.branch_count == 3


def test_build_tree_leaves_keep_input_order_within_directory() -> None:
    tree = build_tree(_branches("team/zed", "team/amy"))

    team = tree.roots[0]
    assert isinstance(team, DirectoryNode)
    assert [node_key(child) for child in team.children] == ["team/zed", "team/amy"]


def test_build_tree_propagates_current_branch_flag() -> None:
    tree = build_tree(_branches("feature/a/deep", "feature/b", "fix/c", current="feature/a/deep"))

    by_key = {node_key(node): node for node in tree.roots}
    feature = by_key["feature/"]
    fix = by_key["fix/"]
    assert isinstance(feature, DirectoryNode)
    assert isinstance(fix, DirectoryNode)
    assert feature.has_current_branch is True
    assert feature.children[0].has_current_branch is True
    assert fix.has_current_branch is False


def test_build_tree_wraps_plain_branches_with_default_metadata() -> None:
    tree = build_tree(_branches("solo"))

    leaf = tree.roots[0]
    assert isinstance(leaf, BranchLeafNode)
    assert isinstance(leaf.branch, BranchWithMetadata)
    assert leaf.branch.starred is False
    assert leaf.branch.checkout_count == 0


def test_build_tree_empty_input() -> None:
    tree = build_tree([])
    assert tree.roots == []
    assert tree.total_branches == 0


def test_build_tree_serializes_with_kind_discriminator() -> None:
    payload = build_tree(_branches("a/b", "d")).model_dump(mode="json")

    assert payload["roots"][0]["kind"] == "dir"
    assert payload["roots"][0]["children"][0]["kind"] == "branch"
    assert payload["roots"][1]["kind"] == "branch"


def test_find_node_and_parent_locates_leaves_and_directories() -> None:
    tree = build_tree(_branches("feature/a/q", "feature/b", "main"))

    found = find_node_and_parent(tree.roots, "feature/a/q")
    assert found is not None
    node, parent = found
    assert isinstance(node, BranchLeafNode)
    assert parent is not None and parent.path == "feature/a/"

    found_dir = find_node_and_parent(tree.roots, "feature/")
    assert found_dir is not None
    assert found_dir[1] is None

    found_root_leaf = find_node_and_parent(tree.roots, "main")
    assert found_root_leaf is not None and found_root_leaf[1] is None

    assert find_node_and_parent(tree.roots, "missing") is None


def test_ancestor_paths_lists_outermost_first() -> None:
    tree = build_tree(_branches("feature/a/q", "main"))

    assert ancestor_paths(tree.roots, "feature/a/q") == ["feature/", "feature/a/"]
    assert ancestor_paths(tree.roots, "main") == []
    assert ancestor_paths(tree.roots, "missing") == []
