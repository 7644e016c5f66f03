"""
Memoized quadtree evolution and the world that drives it.

``evolve`` advances the centred half of a node by one generation under
Conway's rule (B3/S23). Level-1 nodes (4×4 cells) are stepped directly; larger
nodes are split into nine overlapping sub-squares, each evolved recursively,
and the centre is reassembled from the results. Every canonical node keeps its
result, so a region seen before, anywhere in the universe, costs one lookup.

``World`` owns the root. Before each step it pads the root with dead space
until all activity sits well inside the region ``evolve`` returns, then
evolves and re-pads so the universe never shrinks.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import ArrayLike, NDArray

import quadtree
from quadtree import (
    InternalNode,
    InvalidLevel,
    LeafNode,
    Node,
    NodeStore,
    NotLeafStructure,
    iter_live_cells,
    side_length,
)

# ── Rule ────────────────────────────────────────────────────────────────
BIRTH: frozenset[int] = frozenset({3})
SURVIVE: frozenset[int] = frozenset({2, 3})

# Edge bitmask for perimeter walks
TOP, BOTTOM, LEFT, RIGHT = 1, 2, 4, 8
ALL_SIDES = TOP | BOTTOM | LEFT | RIGHT


# ═══════════════════════════════════════════════════════════════════════
#  Evolution engine
# ═══════════════════════════════════════════════════════════════════════

def _next_state(cells: list[list[bool]], y: int, x: int) -> bool:
    living = sum(
        cells[y + dy][x + dx]
        for dy in (-1, 0, 1)
        for dx in (-1, 0, 1)
        if dy or dx
    )
    return living in SURVIVE if cells[y][x] else living in BIRTH


def _evolve_level1(node: InternalNode, store: NodeStore) -> LeafNode:
    nw, ne, sw, se = node.nw, node.ne, node.sw, node.se
    if not all(isinstance(q, LeafNode) for q in (nw, ne, sw, se)):
        raise NotLeafStructure(f"level-1 node {node.fingerprint[:12]} has a non-leaf quadrant")

    cells = [
        [nw.nw, nw.ne, ne.nw, ne.ne],
        [nw.sw, nw.se, ne.sw, ne.se],
        [sw.nw, sw.ne, se.nw, se.ne],
        [sw.sw, sw.se, se.sw, se.se],
    ]
    return store.intern_leaf(
        _next_state(cells, 1, 1), _next_state(cells, 1, 2),
        _next_state(cells, 2, 1), _next_state(cells, 2, 2),
    )


def evolve(node: Node, store: NodeStore) -> Node:
    """Centred sub-region of ``node``, one generation later, one level smaller.

    Raises InvalidLevel for a leaf, NotLeafStructure for a malformed level-1 node.
    """
    if isinstance(node, LeafNode):
        raise InvalidLevel("cannot evolve a level-0 node")
    if node.result is not None:
        store.stats.memo_hits += 1
        return node.result

    if node.level == 1:
        result: Node = _evolve_level1(node, store)
    else:
        nw, ne, sw, se = node.nw, node.ne, node.sw, node.se
        intern = store.intern_node

        # 3×3 overlapping sub-squares, row-major
        n00 = intern(nw.nw, nw.ne, nw.sw, nw.se)  # type: ignore[union-attr]
        n01 = intern(nw.ne, ne.nw, nw.se, ne.sw)  # type: ignore[union-attr]
        n02 = intern(ne.nw, ne.ne, ne.sw, ne.se)  # type: ignore[union-attr]
        n10 = intern(nw.sw, nw.se, sw.nw, sw.ne)  # type: ignore[union-attr]
        n11 = intern(nw.se, ne.sw, sw.ne, se.nw)  # type: ignore[union-attr]
        n12 = intern(ne.sw, ne.se, se.nw, se.ne)  # type: ignore[union-attr]
        n20 = intern(sw.nw, sw.ne, sw.sw, sw.se)  # type: ignore[union-attr]
        n21 = intern(sw.ne, se.nw, sw.se, se.sw)  # type: ignore[union-attr]
        n22 = intern(se.nw, se.ne, se.sw, se.se)  # type: ignore[union-attr]

        r00, r01, r02 = evolve(n00, store), evolve(n01, store), evolve(n02, store)
        r10, r11, r12 = evolve(n10, store), evolve(n11, store), evolve(n12, store)
        r20, r21, r22 = evolve(n20, store), evolve(n21, store), evolve(n22, store)

        center = store.center
        result = intern(
            center(intern(r00, r01, r10, r11)),
            center(intern(r01, r02, r11, r12)),
            center(intern(r10, r11, r20, r21)),
            center(intern(r11, r12, r21, r22)),
        )

    store.stats.evolved += 1
    if node.result is None:
        node.result = result
    return result


# ═══════════════════════════════════════════════════════════════════════
#  Edge detection
# ═══════════════════════════════════════════════════════════════════════

def _edge_alive(node: Node, sides: int) -> bool:
    if node.population == 0:
        return False
    if isinstance(node, LeafNode):
        return bool(
            (sides & TOP and (node.nw or node.ne))
            or (sides & BOTTOM and (node.sw or node.se))
            or (sides & LEFT and (node.nw or node.sw))
            or (sides & RIGHT and (node.ne or node.se))
        )
    for child, facing in (
        (node.nw, TOP | LEFT),
        (node.ne, TOP | RIGHT),
        (node.sw, BOTTOM | LEFT),
        (node.se, BOTTOM | RIGHT),
    ):
        wanted = sides & facing
        if wanted and _edge_alive(child, wanted):
            return True
    return False


def has_living_cell_on_edge(node: Node) -> bool:
    """True if any cell on the outermost ring of ``node`` is alive.

    Only outward-facing quadrants are visited, so the walk follows the
    perimeter, and dead subtrees stop it immediately.
    """
    return _edge_alive(node, ALL_SIDES)


# ═══════════════════════════════════════════════════════════════════════
#  The world
# ═══════════════════════════════════════════════════════════════════════

class World:
    """
    An unbounded Life universe held as one canonical quadtree.

    ``root`` is the current state; ``origin`` is the universe coordinate
    (row, col) of the root's top-left cell, so cells keep stable coordinates
    while the root grows around them.
    """

    def __init__(
        self,
        store: NodeStore | None = None,
        gc_threshold: int | None = None,
    ) -> None:
        self.store: NodeStore = store if store is not None else NodeStore()
        self.root: Node = self.store.intern_leaf(False, False, False, False)
        self.origin: tuple[int, int] = (0, 0)
        self.generation: int = 0
        self.gc_threshold: int | None = gc_threshold
        self.last_event: str = ""

    @classmethod
    def from_cells(
        cls,
        cells: ArrayLike,
        origin: tuple[int, int] = (0, 0),
        gc_threshold: int | None = None,
    ) -> World:
        world = cls(gc_threshold=gc_threshold)
        world.load(cells, origin)
        return world

    def load(self, cells: ArrayLike, origin: tuple[int, int] = (0, 0)) -> None:
        """Replace the universe with ``cells``, top-left cell at ``origin``.

        The generation count starts over from 0.
        """
        self.root = quadtree.from_array(cells, self.store)
        self.origin = origin
        self.generation = 0
        self.last_event = ""

    # ── Structure ───────────────────────────────────────────────────

    def has_living_cell_on_edge(self, node: Node) -> bool:
        return has_living_cell_on_edge(node)

    def create_dead_duplicate_for(self, node: Node) -> Node:
        return self.store.dead(node.level)

    def add_border(self, node: Node) -> Node:
        """``node`` centred in a dead square one level larger."""
        store = self.store
        if isinstance(node, LeafNode):
            return store.intern_node(
                store.intern_leaf(False, False, False, node.nw),
                store.intern_leaf(False, False, node.ne, False),
                store.intern_leaf(False, node.sw, False, False),
                store.intern_leaf(node.se, False, False, False),
            )
        dead = self.create_dead_duplicate_for(node.nw)
        return store.intern_node(
            store.intern_node(dead, dead, dead, node.nw),
            store.intern_node(dead, dead, node.ne, dead),
            store.intern_node(dead, node.sw, dead, dead),
            store.intern_node(node.se, dead, dead, dead),
        )

    def _needs_room(self, node: Node) -> bool:
        """Could the next generation reach outside what ``evolve`` returns?"""
        if node.level < 1 or self.has_living_cell_on_edge(node):
            return True
        inner = self.store.center(node)
        return inner.population != node.population or self.has_living_cell_on_edge(inner)

    def _grow(self) -> None:
        half = side_length(self.root) // 2
        self.root = self.add_border(self.root)
        self.origin = (self.origin[0] - half, self.origin[1] - half)

    # ── Simulation ──────────────────────────────────────────────────

    def next_gen(self) -> str:
        """Advance one generation. Returns event string (empty if none)."""
        events: list[str] = []

        grown = 0
        while self._needs_room(self.root):
            self._grow()
            grown += 1
        if grown:
            events.append(f"grow:{grown}")

        # evolve drops a quarter-side margin and add_border puts it back,
        # so the origin is unchanged
        evolved = evolve(self.root, self.store)
        self.root = self.add_border(evolved)
        self.generation += 1

        if self.gc_threshold is not None and len(self.store) > self.gc_threshold:
            events.append(f"gc:{self.collect_garbage()}")

        self.last_event = ",".join(events)
        return self.last_event

    def advance(self, generations: int) -> list[str]:
        return [self.next_gen() for _ in range(generations)]

    def collect_garbage(self) -> int:
        return self.store.collect([self.root])

    # ── Views ───────────────────────────────────────────────────────

    def population(self) -> int:
        return self.root.population

    def live_cells(self) -> set[tuple[int, int]]:
        """Universe coordinates (row, col) of every live cell."""
        oy, ox = self.origin
        return {(r + oy, c + ox) for r, c in iter_live_cells(self.root)}

    def bounding_box(self) -> tuple[int, int, int, int] | None:
        """(top, left, bottom, right) of the live cells, inclusive; None if empty."""
        cells = self.live_cells()
        if not cells:
            return None
        rows = [r for r, _ in cells]
        cols = [c for _, c in cells]
        return min(rows), min(cols), max(rows), max(cols)

    def to_array(self) -> NDArray[np.bool_]:
        return quadtree.to_array(self.root)

    def render(self, alive: str = "1", dead: str = "0") -> str:
        return quadtree.render(self.root, alive, dead)
