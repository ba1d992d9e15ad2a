"""
genesis/project_tree.py
-----------------------------------------------------------------------------
Read-only navigation over the generated project's file/folder tree.

The tree has no sort key of its own: the order the model listed nodes in is
the order everything downstream uses (API, text rendering, zip export).  All
traversal here is therefore depth-first, pre-order, children in given order.

Lookups follow the same order.  Sibling names are not guaranteed unique, so
``find_by_path`` and ``find_child`` return the *first* match in pre-order.

The tree is built fresh from model output on every generation, so cycles
cannot arise from parsing.  Construction still rejects trees deeper than
``MAX_TREE_DEPTH`` and any node that is its own ancestor, since the input is
ultimately untrusted and every traversal below would otherwise be unbounded.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

from genesis.errors import MalformedBlueprint
from genesis.schema import TreeNode

MAX_TREE_DEPTH: int = 64

PATH_SEPARATOR = "/"


def _join(parent: str, name: str) -> str:
    return f"{parent}{PATH_SEPARATOR}{name}" if parent else name


def iter_preorder(nodes: Sequence[TreeNode]) -> Iterator[tuple[str, int, TreeNode]]:
    """
    Yield ``(path, depth, node)`` for every node, depth-first pre-order.

    Root nodes have depth 1.  Iterative, so deep trees cannot exhaust the
    interpreter's recursion limit.
    """
    stack: list[tuple[str, int, TreeNode]] = [("", 1, node) for node in reversed(nodes)]
    while stack:
        parent_path, depth, node = stack.pop()
        path = _join(parent_path, node.name)
        yield path, depth, node
        if node.is_folder and node.children:
            stack.extend((path, depth + 1, child) for child in reversed(node.children))


def find_child(siblings: Iterable[TreeNode], name: str) -> TreeNode | None:
    """Return the first node in ``siblings`` named ``name``."""
    for node in siblings:
        if node.name == name:
            return node
    return None


class ProjectTree:
    """
    Immutable view over a blueprint's ``fileStructure``.

    Parameters
    ----------
    nodes : The validated root nodes, in display order.

    Raises
    ------
    MalformedBlueprint : If the tree is deeper than ``MAX_TREE_DEPTH`` or a
                         node appears among its own descendants.
    """

    def __init__(self, nodes: Iterable[TreeNode]) -> None:
        self._roots: tuple[TreeNode, ...] = tuple(nodes)
        self._max_depth = self._check_structure()

    def _check_structure(self) -> int:
        deepest = 0
        # (node, depth, ids of its ancestors)
        stack: list[tuple[TreeNode, int, frozenset[int]]] = [
            (node, 1, frozenset()) for node in self._roots
        ]
        while stack:
            node, depth, ancestors = stack.pop()
            if id(node) in ancestors:
                raise MalformedBlueprint(f"Node '{node.name}' appears inside itself.")
            if depth > MAX_TREE_DEPTH:
                raise MalformedBlueprint(
                    f"Project tree exceeds the maximum depth of {MAX_TREE_DEPTH}."
                )
            deepest = max(deepest, depth)
            if node.is_folder and node.children:
                lineage = ancestors | {id(node)}
                stack.extend((child, depth + 1, lineage) for child in node.children)
        return deepest

    # -- Accessors ---------------------------------------------------------

    @property
    def roots(self) -> tuple[TreeNode, ...]:
        return self._roots

    @property
    def max_depth(self) -> int:
        """Depth of the deepest node (0 for an empty tree)."""
        return self._max_depth

    @property
    def file_count(self) -> int:
        return sum(1 for _, node in self.walk() if not node.is_folder)

    @property
    def folder_count(self) -> int:
        return sum(1 for _, node in self.walk() if node.is_folder)

    def __len__(self) -> int:
        return sum(1 for _ in self.walk())

    def __bool__(self) -> bool:
        return bool(self._roots)

    # -- Traversal ---------------------------------------------------------

    def walk(self) -> Iterator[tuple[str, TreeNode]]:
        """Yield ``(path, node)`` pairs in depth-first pre-order."""
        for path, _, node in iter_preorder(self._roots):
            yield path, node

    def files(self) -> list[tuple[str, TreeNode]]:
        """Return every file node with its path, in pre-order."""
        return [(path, node) for path, node in self.walk() if not node.is_folder]

    def find_by_path(self, path: str) -> TreeNode | None:
        """
        Return the first node (pre-order) whose full path equals ``path``.

        Leading/trailing separators are ignored, so ``"/src/a.txt"`` and
        ``"src/a.txt"`` are equivalent.  Node names that themselves contain
        ``/`` are matched on their full joined path.
        """
        wanted = path.strip(PATH_SEPARATOR)
        if not wanted:
            return None
        for node_path, node in self.walk():
            if node_path == wanted:
                return node
        return None

    # -- Rendering ---------------------------------------------------------

    def render(self) -> str:
        """
        Render the tree as indented text, e.g.::

            src/
            ├── components/
            │   └── App.tsx
            └── main.tsx
            package.json

        Folders get a trailing ``/``.  Root nodes are printed flush left.
        """
        lines: list[str] = []

        def label(node: TreeNode) -> str:
            return f"{node.name}/" if node.is_folder else node.name

        # (node, prefix for its children, connector for itself)
        stack: list[tuple[TreeNode, str, str]] = [
            (node, "", "") for node in reversed(self._roots)
        ]
        while stack:
            node, prefix, connector = stack.pop()
            lines.append(f"{prefix}{connector}{label(node)}")
            if not (node.is_folder and node.children):
                continue
            if connector == "":
                child_prefix = prefix
            elif connector == "└── ":
                child_prefix = prefix + "    "
            else:
                child_prefix = prefix + "│   "
            children = node.children
            for index in range(len(children) - 1, -1, -1):
                is_last = index == len(children) - 1
                stack.append((children[index], child_prefix, "└── " if is_last else "├── "))

        return "\n".join(lines)
