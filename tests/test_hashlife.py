from __future__ import annotations

import numpy as np
import pytest

from hashlife import World, evolve, has_living_cell_on_edge
from life import dense_step, pattern_cells, pattern_grid, random_soup
from quadtree import (
    InternalNode,
    InvalidLevel,
    NodeStore,
    NotLeafStructure,
    from_array,
    make_internal,
    to_array,
)


@pytest.fixture
def store() -> NodeStore:
    return NodeStore()


def _grid(size: int, cells: list[tuple[int, int]]) -> np.ndarray:
    grid = np.zeros((size, size), dtype=bool)
    for r, c in cells:
        grid[r, c] = True
    return grid


def _dense_run(seed: np.ndarray, generations: int) -> set[tuple[int, int]]:
    """Live cells after ``generations`` dense steps, seed top-left at (0, 0)."""
    margin = generations + 2
    grid = np.zeros((seed.shape[0] + 2 * margin, seed.shape[1] + 2 * margin), dtype=bool)
    grid[margin : margin + seed.shape[0], margin : margin + seed.shape[1]] = seed
    for _ in range(generations):
        grid = dense_step(grid)
    ys, xs = np.nonzero(grid)
    return {(int(y) - margin, int(x) - margin) for y, x in zip(ys, xs)}


# ═══════════════════════════════════════════════════════════════════════
#  Evolution engine
# ═══════════════════════════════════════════════════════════════════════

class TestEvolve:

    def test_level1_vertical_blinker(self, store: NodeStore) -> None:
        # 0000 / 0100 / 0100 / 0100
        node = store.intern_node(
            store.intern_leaf(False, False, False, True),
            store.intern_leaf(False, False, False, False),
            store.intern_leaf(False, True, False, True),
            store.intern_leaf(False, False, False, False),
        )
        result = evolve(node, store)
        assert result is store.intern_leaf(False, False, True, True)
        assert result.fingerprint == "0011"
        assert node.result is result

    def test_level2_blinker(self, store: NodeStore) -> None:
        node = from_array(_grid(8, [(2, 3), (3, 3), (4, 3)]), store)
        result = evolve(node, store)

        assert result.level == 1
        expected = np.zeros((4, 4), dtype=bool)
        expected[1, 0:3] = True
        np.testing.assert_array_equal(to_array(result), expected)
        assert isinstance(result, InternalNode)
        assert [q.fingerprint for q in (result.nw, result.ne, result.sw, result.se)] == [
            "0011", "0010", "0000", "0000",
        ]

    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    def test_matches_dense_stepper(self, store: NodeStore, seed: int) -> None:
        grid = random_soup(16, 16, density=0.4, seed=seed)
        result = evolve(from_array(grid, store), store)
        np.testing.assert_array_equal(to_array(result), dense_step(grid)[4:12, 4:12])

    def test_dead_nodes_stay_dead(self, store: NodeStore) -> None:
        for level in range(1, 7):
            result = evolve(store.dead(level), store)
            assert result is store.dead(level - 1)

    def test_leaf_is_invalid(self, store: NodeStore) -> None:
        with pytest.raises(InvalidLevel):
            evolve(store.intern_leaf(True, True, True, True), store)

    def test_level1_with_internal_children(self, store: NodeStore) -> None:
        child = store.dead(1)
        bogus = InternalNode(
            nw=child, ne=child, sw=child, se=child,
            level=1, fingerprint="bogus", population=0,
        )
        with pytest.raises(NotLeafStructure):
            evolve(bogus, store)

    def test_second_evolution_is_a_memo_hit(self, store: NodeStore) -> None:
        node = from_array(random_soup(16, 16, seed=11), store)
        first = evolve(node, store)
        evolved = store.stats.evolved
        memo_hits = store.stats.memo_hits
        assert evolved > 0

        second = evolve(node, store)
        assert second is first
        assert store.stats.evolved == evolved
        assert store.stats.memo_hits == memo_hits + 1

    def test_identical_regions_evolve_once(self, store: NodeStore) -> None:
        tile = random_soup(8, 8, seed=5)
        node = from_array(np.tile(tile, (2, 2)), store)
        quadrant = node.nw  # type: ignore[union-attr]
        assert quadrant is node.ne is node.sw is node.se  # type: ignore[union-attr]

        evolve(node, store)
        assert quadrant.result is not None  # type: ignore[union-attr]

    def test_result_depends_on_content_not_identity(self, store: NodeStore) -> None:
        node = from_array(random_soup(16, 16, seed=8), store)
        copy = make_internal(node.nw, node.ne, node.sw, node.se)  # type: ignore[union-attr]
        assert copy is not node
        assert evolve(copy, store) is evolve(node, store)


# ═══════════════════════════════════════════════════════════════════════
#  Edge detection
# ═══════════════════════════════════════════════════════════════════════

class TestEdgeDetection:

    @pytest.mark.parametrize("cells", [
        [],
        [(3, 4)],
        [(1, 1), (6, 6), (1, 6), (6, 1)],
        [(r, c) for r in range(1, 7) for c in range(1, 7)],
    ])
    def test_interior_only(self, store: NodeStore, cells: list[tuple[int, int]]) -> None:
        assert not has_living_cell_on_edge(from_array(_grid(8, cells), store))

    @pytest.mark.parametrize("cell", [
        (0, 5),   # top
        (7, 2),   # bottom
        (4, 0),   # left
        (6, 7),   # right
        (0, 0), (0, 7), (7, 0), (7, 7),
    ])
    def test_single_boundary_cell(self, store: NodeStore, cell: tuple[int, int]) -> None:
        assert has_living_cell_on_edge(from_array(_grid(8, [cell, (3, 3)]), store))

    def test_combined_sides(self, store: NodeStore) -> None:
        cells = [(0, 3), (7, 3), (3, 0), (3, 7)]
        assert has_living_cell_on_edge(from_array(_grid(16, cells), store))
        grid = _grid(16, [])
        grid[0, :] = grid[-1, :] = grid[:, 0] = grid[:, -1] = True
        assert has_living_cell_on_edge(from_array(grid, store))

    def test_leaves(self, store: NodeStore) -> None:
        assert not has_living_cell_on_edge(store.intern_leaf(False, False, False, False))
        assert has_living_cell_on_edge(store.intern_leaf(False, False, False, True))
        assert has_living_cell_on_edge(store.intern_leaf(True, False, False, False))


# ═══════════════════════════════════════════════════════════════════════
#  World controller
# ═══════════════════════════════════════════════════════════════════════

class TestBorders:

    def test_add_border_around_full_leaf(self) -> None:
        world = World()
        leaf = world.store.intern_leaf(True, True, True, True)
        bordered = world.add_border(leaf)

        assert bordered.level == 1
        assert isinstance(bordered, InternalNode)
        assert [q.fingerprint for q in (bordered.nw, bordered.ne, bordered.sw, bordered.se)] == [
            "0001", "0010", "0100", "1000",
        ]
        expected = np.zeros((4, 4), dtype=bool)
        expected[1:3, 1:3] = True
        np.testing.assert_array_equal(to_array(bordered), expected)

    def test_add_border_recentres_internal_node(self) -> None:
        world = World()
        grid = random_soup(8, 8, seed=21)
        bordered = world.add_border(from_array(grid, world.store))

        assert bordered.level == 3
        expected = np.zeros((16, 16), dtype=bool)
        expected[4:12, 4:12] = grid
        np.testing.assert_array_equal(to_array(bordered), expected)
        assert bordered in world.store

    def test_dead_duplicate(self) -> None:
        world = World()
        a = from_array(random_soup(16, 16, seed=1), world.store)
        b = from_array(random_soup(16, 16, seed=2), world.store)
        dead = world.create_dead_duplicate_for(a)
        assert dead.level == a.level
        assert dead.population == 0
        assert world.create_dead_duplicate_for(b) is dead
        assert world.create_dead_duplicate_for(world.store.dead(0)) is world.store.dead(0)


class TestWorld:

    def test_new_world(self) -> None:
        world = World()
        assert world.root.level == 0
        assert world.root.population == 0
        assert world.generation == 0
        assert world.origin == (0, 0)
        assert world.render() == "00\n00"

    def test_empty_world_stays_empty(self) -> None:
        world = World()
        levels = []
        for _ in range(10):
            world.next_gen()
            levels.append(world.root.level)
            assert world.population() == 0
        assert world.generation == 10
        assert levels == sorted(levels)
        assert levels[0] >= 1
        assert world.live_cells() == set()
        assert world.bounding_box() is None

    def test_blinker_oscillates(self) -> None:
        world = World.from_cells(pattern_grid("blinker"))
        start = world.live_cells()
        assert start == {(0, 0), (0, 1), (0, 2)}

        world.next_gen()
        assert world.live_cells() == {(-1, 1), (0, 1), (1, 1)}
        world.next_gen()
        assert world.live_cells() == start

    def test_block_is_still(self) -> None:
        world = World.from_cells(pattern_grid("block"), origin=(5, 5))
        start = world.live_cells()
        assert start == {(5, 5), (5, 6), (6, 5), (6, 6)}
        world.advance(5)
        assert world.live_cells() == start

    def test_glider_translates_every_four_generations(self) -> None:
        world = World.from_cells(pattern_grid("glider"))
        start = world.live_cells()
        assert start == set(pattern_cells("glider"))

        world.advance(4)
        assert world.live_cells() == {(r + 1, c + 1) for r, c in start}

        world.advance(36)
        assert world.live_cells() == {(r + 10, c + 10) for r, c in start}
        assert world.population() == 5

    def test_origin_offsets_coordinates(self) -> None:
        world = World.from_cells(pattern_grid("glider"), origin=(10, -5))
        assert world.live_cells() == {(r + 10, c - 5) for r, c in pattern_cells("glider")}
        world.advance(8)
        assert world.live_cells() == {(r + 12, c - 3) for r, c in pattern_cells("glider")}

    def test_first_step_grows_the_universe(self) -> None:
        world = World.from_cells(pattern_grid("r_pentomino"))
        level = world.root.level
        event = world.next_gen()
        assert event.startswith("grow:")
        assert world.last_event == event
        assert world.root.level > level

    def test_level_never_shrinks(self) -> None:
        world = World.from_cells(random_soup(12, 12, seed=4))
        levels = [world.root.level]
        for _ in range(40):
            world.next_gen()
            levels.append(world.root.level)
        assert levels == sorted(levels)

    @pytest.mark.parametrize("seed", [3, 17, 42])
    def test_matches_dense_stepper(self, seed: int) -> None:
        soup = random_soup(20, 20, density=0.35, seed=seed)
        world = World.from_cells(soup)
        world.advance(30)
        assert world.generation == 30
        assert world.live_cells() == _dense_run(soup, 30)

    def test_views_agree(self) -> None:
        world = World.from_cells(pattern_grid("lwss"))
        world.advance(7)
        grid = world.to_array()
        oy, ox = world.origin
        ys, xs = np.nonzero(grid)
        assert {(int(y) + oy, int(x) + ox) for y, x in zip(ys, xs)} == world.live_cells()
        assert int(grid.sum()) == world.population()
        assert world.render().count("1") == world.population()
        top, left, bottom, right = world.bounding_box()  # type: ignore[misc]
        assert bottom >= top and right >= left

    def test_load_replaces_universe(self) -> None:
        world = World.from_cells(pattern_grid("glider"))
        world.advance(5)
        assert world.generation == 5
        world.load(pattern_grid("block"), origin=(1, 1))
        assert world.live_cells() == {(1, 1), (1, 2), (2, 1), (2, 2)}
        assert world.generation == 0
        assert world.last_event == ""


class TestGarbageCollection:

    def test_collection_does_not_change_the_simulation(self) -> None:
        seed = pattern_grid("r_pentomino")
        plain = World.from_cells(seed)
        collected = World.from_cells(seed, gc_threshold=200)

        events = []
        for _ in range(60):
            plain.next_gen()
            events.append(collected.next_gen())
            assert collected.live_cells() == plain.live_cells()

        assert any("gc:" in e for e in events)
        assert collected.store.stats.collected > 0
        assert collected.root in collected.store

    def test_collect_clears_dangling_memos(self, store: NodeStore) -> None:
        node = from_array(random_soup(16, 16, seed=9), store)
        expected = evolve(node, store).fingerprint

        store.collect([node])

        assert node in store
        assert node.result is None or node.result in store
        again = evolve(node, store)
        assert again.fingerprint == expected
        assert again in store

    def test_collect_garbage_keeps_root(self) -> None:
        world = World.from_cells(random_soup(16, 16, seed=6))
        world.advance(5)
        cells = world.live_cells()
        size = len(world.store)

        removed = world.collect_garbage()

        assert removed > 0
        assert len(world.store) == size - removed
        assert world.root in world.store
        assert world.live_cells() == cells
        world.advance(5)
        assert world.generation == 10
