"""Message tree engine.

Every function treats its input tree as immutable and returns a new one.
Untouched subtrees are shared with the input, so callers must never
mutate nodes in place. Nodes are addressed by their stable ids; index
paths (``"0.2.1"``) only appear in :func:`adjust_path_for_removal`, for
the duration of a single synchronous UI interaction.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Iterator

from .models import (
    FolderNode,
    MessageConfig,
    MessageNode,
    MessageTreeNode,
    build_flat_message_tree,
    flatten_message_tree,
)


class TreeEditError(ValueError):
    """Raised when a structural edit references an unknown or invalid node."""

    pass


def flatten(tree: list[MessageTreeNode]) -> list[MessageConfig]:
    """Depth-first messages of the tree, folders elided."""
    return flatten_message_tree(tree)


def build_flat(messages: list[MessageConfig]) -> list[MessageTreeNode]:
    """A folderless tree with one message node per message."""
    return build_flat_message_tree(messages)


def iter_nodes(tree: list[MessageTreeNode]) -> Iterator[MessageTreeNode]:
    """Depth-first pre-order walk over every node."""
    for node in tree:
        yield node
        if isinstance(node, FolderNode):
            yield from iter_nodes(node.children)


def node_ids(tree: list[MessageTreeNode]) -> set[str]:
    return {node.id for node in iter_nodes(tree)}


def find_node(tree: list[MessageTreeNode], node_id: str) -> MessageTreeNode | None:
    for node in iter_nodes(tree):
        if node.id == node_id:
            return node
    return None


def collect_message_ids(folder_id: str, tree: list[MessageTreeNode]) -> list[str]:
    """Ids of every message below ``folder_id``, depth-first.

    Nested folder ids are not included. Unknown ids and message ids yield
    an empty list.
    """
    folder = find_node(tree, folder_id)
    if not isinstance(folder, FolderNode):
        return []
    return [m.id for m in flatten_message_tree(folder.children)]


def _map_children(
    tree: list[MessageTreeNode],
    parent_id: str | None,
    fn: Callable[[list[MessageTreeNode]], list[MessageTreeNode]],
) -> tuple[list[MessageTreeNode], bool]:
    """Apply ``fn`` to the child list of ``parent_id`` (None is the root)."""
    if parent_id is None:
        return fn(tree), True

    out: list[MessageTreeNode] = []
    found = False
    for node in tree:
        if not found and isinstance(node, FolderNode):
            if node.id == parent_id:
                out.append(replace(node, children=fn(node.children)))
                found = True
                continue
            children, found = _map_children(node.children, parent_id, fn)
            out.append(replace(node, children=children) if found else node)
        else:
            out.append(node)
    return out, found


def insert_node(
    tree: list[MessageTreeNode],
    node: MessageTreeNode,
    parent_id: str | None = None,
    index: int | None = None,
) -> list[MessageTreeNode]:
    """Insert ``node`` under ``parent_id`` (root if None) at ``index`` (end if None).

    Raises:
        TreeEditError: If the parent is unknown or any inserted id already exists
    """
    existing = node_ids(tree)
    incoming = node_ids([node])
    clashes = existing & incoming
    if clashes:
        raise TreeEditError(f"Duplicate node id(s): {', '.join(sorted(clashes))}")

    def insert(children: list[MessageTreeNode]) -> list[MessageTreeNode]:
        position = len(children) if index is None else max(0, min(index, len(children)))
        return children[:position] + [node] + children[position:]

    new_tree, found = _map_children(tree, parent_id, insert)
    if not found:
        raise TreeEditError(f"Unknown folder: {parent_id}")
    return new_tree


def remove_node(
    tree: list[MessageTreeNode], node_id: str
) -> tuple[list[MessageTreeNode], MessageTreeNode]:
    """Remove a node (and its subtree); returns the new tree and the removed node.

    Raises:
        TreeEditError: If no node has ``node_id``
    """
    removed: list[MessageTreeNode] = []

    def walk(nodes: list[MessageTreeNode]) -> list[MessageTreeNode]:
        out: list[MessageTreeNode] = []
        for node in nodes:
            if removed:
                out.append(node)
            elif node.id == node_id:
                removed.append(node)
            elif isinstance(node, FolderNode):
                children = walk(node.children)
                out.append(replace(node, children=children) if removed else node)
            else:
                out.append(node)
        return out

    new_tree = walk(tree)
    if not removed:
        raise TreeEditError(f"Unknown node: {node_id}")
    return new_tree, removed[0]


def move_node(
    tree: list[MessageTreeNode],
    node_id: str,
    new_parent_id: str | None = None,
    index: int | None = None,
) -> list[MessageTreeNode]:
    """Move a node under ``new_parent_id`` at ``index`` (its final position).

    Raises:
        TreeEditError: If either node is unknown, or a folder would move into itself
    """
    node = find_node(tree, node_id)
    if node is None:
        raise TreeEditError(f"Unknown node: {node_id}")
    if new_parent_id is not None and new_parent_id in node_ids([node]):
        raise TreeEditError(f"Cannot move {node_id} into itself")

    without, removed = remove_node(tree, node_id)
    return insert_node(without, removed, new_parent_id, index)


def replace_message(tree: list[MessageTreeNode], message: MessageConfig) -> list[MessageTreeNode]:
    """Swap in a new version of the message with the same id.

    Raises:
        TreeEditError: If the message is not in the tree
    """
    replaced = False

    def walk(nodes: list[MessageTreeNode]) -> list[MessageTreeNode]:
        nonlocal replaced
        out: list[MessageTreeNode] = []
        for node in nodes:
            if not replaced and isinstance(node, MessageNode) and node.id == message.id:
                out.append(MessageNode(id=message.id, message=message))
                replaced = True
            elif not replaced and isinstance(node, FolderNode):
                children = walk(node.children)
                out.append(replace(node, children=children) if replaced else node)
            else:
                out.append(node)
        return out

    new_tree = walk(tree)
    if not replaced:
        raise TreeEditError(f"Unknown message: {message.id}")
    return new_tree


def update_folder(
    tree: list[MessageTreeNode],
    folder_id: str,
    name: str | None = None,
    collapsed: bool | None = None,
) -> list[MessageTreeNode]:
    """Rename a folder and/or set its collapsed flag.

    Raises:
        TreeEditError: If ``folder_id`` is not a folder
    """
    if not isinstance(find_node(tree, folder_id), FolderNode):
        raise TreeEditError(f"Unknown folder: {folder_id}")

    def walk(nodes: list[MessageTreeNode]) -> list[MessageTreeNode]:
        out: list[MessageTreeNode] = []
        for node in nodes:
            if isinstance(node, FolderNode):
                if node.id == folder_id:
                    node = replace(
                        node,
                        name=node.name if name is None else name,
                        collapsed=node.collapsed if collapsed is None else collapsed,
                    )
                else:
                    node = replace(node, children=walk(node.children))
            out.append(node)
        return out

    return walk(tree)


def adjust_path_for_removal(target_path: str, removed_path: str) -> str:
    """Re-point an index path after the node at ``removed_path`` is removed.

    Paths are dot-separated sibling indices (``"1.0.3"``). When the removed
    node was an earlier sibling on the target's branch, the target's index
    at that depth shifts down by one.
    """
    if not target_path or not removed_path:
        return target_path

    def to_indices(path: str) -> list[int]:
        return [int(part) for part in path.split(".") if part]

    target = to_indices(target_path)
    removed = to_indices(removed_path)
    if not removed:
        return target_path

    depth = len(removed) - 1
    if len(target) <= depth:
        return target_path
    if target[:depth] != removed[:depth]:
        return target_path

    if target[depth] > removed[depth]:
        target[depth] -= 1
    return ".".join(str(i) for i in target)
