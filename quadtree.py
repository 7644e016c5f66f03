"""
Canonical quadtree nodes for an unbounded Life universe.

The universe is a perfect quadtree. A leaf holds a 2×2 block of cells; an
internal node of level L holds four level L-1 quadrants and covers a square
of side 2^(L+1). Every node carries a content fingerprint, and a NodeStore
maps fingerprints to one canonical instance each (hash-consing), so that
identical regions anywhere in the universe share one object and one memoized
evolution result.

Fingerprints:
  leaf      "0110"-style string, one character per cell (nw, ne, sw, se)
  internal  SHA-256 hex of the level and the four child fingerprints

Grid conversion (numpy) and plain-text rendering live here as well, since
they only need the node model.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Union

import numpy as np
from numpy.typing import ArrayLike, NDArray


# ═══════════════════════════════════════════════════════════════════════
#  Errors
# ═══════════════════════════════════════════════════════════════════════

class QuadtreeError(Exception):
    """Base class for broken quadtree contracts."""


class InvariantViolation(QuadtreeError):
    """Quadrants of different levels were combined into one node."""


class InvalidLevel(QuadtreeError):
    """An operation was asked for a level the node cannot provide."""


class NotLeafStructure(QuadtreeError):
    """A level-1 node has a quadrant that is not a leaf."""


# ═══════════════════════════════════════════════════════════════════════
#  Node model
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class LeafNode:
    """A 2×2 block of cells. Level 0."""
    nw: bool
    ne: bool
    sw: bool
    se: bool
    fingerprint: str
    population: int
    level: int = 0


@dataclass(eq=False)
class InternalNode:
    """Four equal-level quadrants.

    Everything except ``result`` is fixed at construction. ``result`` is the
    memoized centred region one generation later, written at most once while
    the node lives in a store.
    """
    nw: Node
    ne: Node
    sw: Node
    se: Node
    level: int
    fingerprint: str
    population: int
    result: Node | None = field(default=None, repr=False)


Node = Union[LeafNode, InternalNode]


def is_leaf(node: Node) -> bool:
    return isinstance(node, LeafNode)


def side_length(node: Node) -> int:
    """Number of cells along one side of the square a node covers."""
    return 1 << (node.level + 1)


def leaf_fingerprint(nw: bool, ne: bool, sw: bool, se: bool) -> str:
    return "".join("1" if cell else "0" for cell in (nw, ne, sw, se))


def _check_levels(nw: Node, ne: Node, sw: Node, se: Node) -> int:
    level = nw.level
    if not (ne.level == level and sw.level == level and se.level == level):
        raise InvariantViolation(
            f"quadrant levels differ: nw={nw.level} ne={ne.level} "
            f"sw={sw.level} se={se.level}"
        )
    return level


def internal_fingerprint(nw: Node, ne: Node, sw: Node, se: Node) -> str:
    """Fixed-width digest of four same-level children, order nw, ne, sw, se."""
    level = _check_levels(nw, ne, sw, se) + 1
    raw = f"{level}:{nw.fingerprint}|{ne.fingerprint}|{sw.fingerprint}|{se.fingerprint}"
    return hashlib.sha256(raw.encode("ascii")).hexdigest()


def make_leaf(nw: bool, ne: bool, sw: bool, se: bool) -> LeafNode:
    nw, ne, sw, se = bool(nw), bool(ne), bool(sw), bool(se)
    return LeafNode(
        nw=nw, ne=ne, sw=sw, se=se,
        fingerprint=leaf_fingerprint(nw, ne, sw, se),
        population=nw + ne + sw + se,
    )


def make_internal(nw: Node, ne: Node, sw: Node, se: Node) -> InternalNode:
    """Build (without deduplicating) the node with the given quadrants.

    Raises InvariantViolation if the quadrants are not all the same level.
    """
    fingerprint = internal_fingerprint(nw, ne, sw, se)
    return InternalNode(
        nw=nw, ne=ne, sw=sw, se=se,
        level=nw.level + 1,
        fingerprint=fingerprint,
        population=nw.population + ne.population + sw.population + se.population,
    )


def center_of(nw: Node, ne: Node, sw: Node, se: Node) -> Node:
    """The centre of the square formed by four same-level nodes.

    The result has the same level as the inputs. For leaves it is the leaf
    made of the four innermost cells.
    """
    _check_levels(nw, ne, sw, se)
    if isinstance(nw, LeafNode):
        return make_leaf(nw.se, ne.sw, sw.ne, se.nw)  # type: ignore[union-attr]
    return make_internal(nw.se, ne.sw, sw.ne, se.nw)  # type: ignore[union-attr]


# ═══════════════════════════════════════════════════════════════════════
#  Node store
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class StoreStats:
    """Counters for the store and the evolution memo (read by the stats log)."""
    inserted: int = 0    # distinct nodes registered
    hits: int = 0        # intern calls answered from the table
    evolved: int = 0     # evolutions actually computed
    memo_hits: int = 0   # evolutions answered by node.result
    collected: int = 0   # entries removed by collect()


class NodeStore:
    """Fingerprint → canonical node table for one world.

    Nodes handed out by ``intern_leaf``/``intern_node`` are canonical: two
    calls with equal content return the same object, and every child of a
    canonical node is itself canonical.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._dead: dict[int, Node] = {}
        self.stats: StoreStats = StoreStats()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: object) -> bool:
        fingerprint = getattr(node, "fingerprint", None)
        return fingerprint is not None and self._nodes.get(fingerprint) is node

    def _register(self, node: Node) -> Node:
        self._nodes[node.fingerprint] = node
        self.stats.inserted += 1
        return node

    # ── Interning ───────────────────────────────────────────────────

    def intern_leaf(self, nw: bool, ne: bool, sw: bool, se: bool) -> LeafNode:
        found = self._nodes.get(leaf_fingerprint(nw, ne, sw, se))
        if found is not None:
            self.stats.hits += 1
            return found  # type: ignore[return-value]
        return self._register(make_leaf(nw, ne, sw, se))  # type: ignore[return-value]

    def intern_node(self, nw: Node, ne: Node, sw: Node, se: Node) -> InternalNode:
        found = self._nodes.get(internal_fingerprint(nw, ne, sw, se))
        if found is not None:
            self.stats.hits += 1
            return found  # type: ignore[return-value]
        node = make_internal(
            self.intern(nw), self.intern(ne), self.intern(sw), self.intern(se)
        )
        return self._register(node)  # type: ignore[return-value]

    def intern(self, node: Node) -> Node:
        """Canonical instance for ``node``, registering it bottom-up if new."""
        found = self._nodes.get(node.fingerprint)
        if found is not None:
            return found
        if isinstance(node, LeafNode):
            return self._register(make_leaf(node.nw, node.ne, node.sw, node.se))
        return self.intern_node(node.nw, node.ne, node.sw, node.se)

    def center(self, node: Node) -> Node:
        """Canonical centred sub-node, one level below ``node``."""
        if isinstance(node, LeafNode):
            raise InvalidLevel("a leaf has no centred sub-node")
        nw, ne, sw, se = node.nw, node.ne, node.sw, node.se
        if isinstance(nw, LeafNode):
            return self.intern_leaf(nw.se, ne.sw, sw.ne, se.nw)  # type: ignore[union-attr]
        return self.intern_node(nw.se, ne.sw, sw.ne, se.nw)  # type: ignore[union-attr]

    def dead(self, level: int) -> Node:
        """Canonical all-dead node of ``level``."""
        if level < 0:
            raise InvalidLevel(f"no node has level {level}")
        node = self._dead.get(level)
        if node is not None:
            return node
        if level == 0:
            node = self.intern_leaf(False, False, False, False)
        else:
            child = self.dead(level - 1)
            node = self.intern_node(child, child, child, child)
        self._dead[level] = node
        return node

    # ── Garbage collection ──────────────────────────────────────────

    def collect(self, roots: Iterable[Node]) -> int:
        """Drop every entry unreachable from ``roots``; return how many went.

        Memoized results pointing at dropped nodes are cleared so a kept
        node never hands out a non-canonical region.
        """
        marked: set[int] = set()
        stack: list[Node] = [self._nodes.get(r.fingerprint, r) for r in roots]
        stack.extend(self._dead.values())
        while stack:
            node = stack.pop()
            if id(node) in marked:
                continue
            marked.add(id(node))
            if isinstance(node, InternalNode):
                stack.extend((node.nw, node.ne, node.sw, node.se))

        doomed = [fp for fp, node in self._nodes.items() if id(node) not in marked]
        for fp in doomed:
            del self._nodes[fp]
        for node in self._nodes.values():
            if (
                isinstance(node, InternalNode)
                and node.result is not None
                and id(node.result) not in marked
            ):
                node.result = None

        self.stats.collected += len(doomed)
        return len(doomed)


# ═══════════════════════════════════════════════════════════════════════
#  Grid conversion & rendering
# ═══════════════════════════════════════════════════════════════════════

def from_array(cells: ArrayLike, store: NodeStore) -> Node:
    """Build a canonical node from a 2-D boolean grid.

    The grid sits at the top-left of the smallest power-of-two square
    (side ≥ 2) that holds it; the rest is dead.
    """
    grid = np.asarray(cells, dtype=bool)
    if grid.ndim != 2:
        raise ValueError(f"expected a 2-D cell grid, got {grid.ndim} dimension(s)")

    h, w = grid.shape
    side = 2
    while side < max(h, w):
        side *= 2
    padded = np.zeros((side, side), dtype=bool)
    padded[:h, :w] = grid

    tier: list[list[Node]] = [
        [
            store.intern_leaf(
                bool(padded[r, c]), bool(padded[r, c + 1]),
                bool(padded[r + 1, c]), bool(padded[r + 1, c + 1]),
            )
            for c in range(0, side, 2)
        ]
        for r in range(0, side, 2)
    ]
    while len(tier) > 1:
        n = len(tier)
        tier = [
            [
                store.intern_node(
                    tier[r][c], tier[r][c + 1], tier[r + 1][c], tier[r + 1][c + 1]
                )
                for c in range(0, n, 2)
            ]
            for r in range(0, n, 2)
        ]
    return tier[0][0]


def to_array(node: Node) -> NDArray[np.bool_]:
    """The full square a node covers, as a boolean array."""
    if isinstance(node, LeafNode):
        return np.array([[node.nw, node.ne], [node.sw, node.se]], dtype=bool)
    if node.population == 0:
        side = side_length(node)
        return np.zeros((side, side), dtype=bool)
    return np.block([
        [to_array(node.nw), to_array(node.ne)],
        [to_array(node.sw), to_array(node.se)],
    ])


def render(node: Node, alive: str = "1", dead: str = "0") -> str:
    """One text row per cell row, top to bottom."""
    return "\n".join(
        "".join(alive if cell else dead for cell in row)
        for row in to_array(node).tolist()
    )


def iter_live_cells(node: Node, row: int = 0, col: int = 0) -> Iterator[tuple[int, int]]:
    """Yield (row, col) of each live cell, offset by the node's top-left corner.

    Dead subtrees are skipped, so cost follows the live cells rather than the area.
    """
    if node.population == 0:
        return
    if isinstance(node, LeafNode):
        if node.nw:
            yield row, col
        if node.ne:
            yield row, col + 1
        if node.sw:
            yield row + 1, col
        if node.se:
            yield row + 1, col + 1
        return
    half = side_length(node) // 2
    yield from iter_live_cells(node.nw, row, col)
    yield from iter_live_cells(node.ne, row, col + half)
    yield from iter_live_cells(node.sw, row + half, col)
    yield from iter_live_cells(node.se, row + half, col + half)
