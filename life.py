#!/usr/bin/env python3
"""
  ∞  L I F E  ∞   (quadtree edition)
  Conway's Game of Life on an unbounded, memoized quadtree.

  Seeds the universe from the built-in pattern library or a random soup,
  runs it through the quadtree engine, and prints frames with half-block
  characters (two cell rows per terminal line). The universe has no edges:
  a glider simply keeps going and the world grows around it.

  Usage:
    python3 life.py                                 # r-pentomino, 100 gens
    python3 life.py --pattern glider -n 8 --every 4
    python3 life.py --soup 32x32 --density 0.3 --seed 7 -n 200 --every 50
    python3 life.py --pattern acorn -n 500 --every 0 --stats life_stats.csv
    python3 life.py --pattern lwss -n 40 --verify    # cross-check vs dense stepper
    python3 life.py --list

  Stats are written as CSV when --stats is given.
"""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, ClassVar

import numpy as np
from numpy.typing import NDArray
from scipy.ndimage import convolve

from hashlife import BIRTH, SURVIVE, World

# ── Convolution kernel (dense reference stepper) ───────────────────────
NEIGHBOR_KERNEL: NDArray = np.array([[1, 1, 1], [1, 0, 1], [1, 1, 1]], dtype=np.int16)

# ── Half-block characters ───────────────────────────────────────────────
UPPER_HALF = "\u2580"  # ▀  top pixel alive
LOWER_HALF = "\u2584"  # ▄  bottom pixel alive
FULL_BLOCK = "\u2588"  # █  both alive

# ── Pattern library ─────────────────────────────────────────────────────
# (row, col) offsets of live cells
PATTERNS: dict[str, list[tuple[int, int]]] = {
    "glider": [(0, 1), (1, 2), (2, 0), (2, 1), (2, 2)],
    "blinker": [(0, 0), (0, 1), (0, 2)],
    "block": [(0, 0), (0, 1), (1, 0), (1, 1)],
    "lwss": [
        (0, 1), (0, 4), (1, 0), (2, 0), (2, 4),
        (3, 0), (3, 1), (3, 2), (3, 3),
    ],
    "hwss": [
        (0, 1), (0, 2), (1, 0), (1, 5), (2, 0),
        (3, 0), (3, 5), (4, 0), (4, 1), (4, 2), (4, 3), (4, 4),
    ],
    "r_pentomino": [(0, 1), (0, 2), (1, 0), (1, 1), (2, 1)],
    "acorn": [(0, 1), (1, 3), (2, 0), (2, 1), (2, 4), (2, 5), (2, 6)],
    "diehard": [(0, 6), (1, 0), (1, 1), (2, 1), (2, 5), (2, 6), (2, 7)],
    "pi_heptomino": [(0, 0), (0, 1), (0, 2), (1, 1), (2, 1), (3, 0), (3, 2)],
    "b_heptomino": [
        (0, 1), (1, 0), (1, 2), (1, 3), (2, 0), (2, 1), (3, 1),
    ],
    "gosper_gun": [
        (0, 24),
        (1, 22), (1, 24),
        (2, 12), (2, 13), (2, 20), (2, 21), (2, 34), (2, 35),
        (3, 11), (3, 15), (3, 20), (3, 21), (3, 34), (3, 35),
        (4, 0), (4, 1), (4, 10), (4, 16), (4, 20), (4, 21),
        (5, 0), (5, 1), (5, 10), (5, 14), (5, 16), (5, 17), (5, 22), (5, 24),
        (6, 10), (6, 16), (6, 24),
        (7, 11), (7, 15),
        (8, 12), (8, 13),
    ],
    "pulsar": [
        (0, 2), (0, 3), (0, 4), (0, 8), (0, 9), (0, 10),
        (2, 0), (2, 5), (2, 7), (2, 12),
        (3, 0), (3, 5), (3, 7), (3, 12),
        (4, 0), (4, 5), (4, 7), (4, 12),
        (5, 2), (5, 3), (5, 4), (5, 8), (5, 9), (5, 10),
        (7, 2), (7, 3), (7, 4), (7, 8), (7, 9), (7, 10),
        (8, 0), (8, 5), (8, 7), (8, 12),
        (9, 0), (9, 5), (9, 7), (9, 12),
        (10, 0), (10, 5), (10, 7), (10, 12),
        (12, 2), (12, 3), (12, 4), (12, 8), (12, 9), (12, 10),
    ],
    "pentadecathlon": [
        (0, 1), (1, 1), (2, 0), (2, 2), (3, 1), (4, 1),
        (5, 1), (6, 1), (7, 0), (7, 2), (8, 1), (9, 1),
    ],
}

TRAVELLERS = ["glider", "lwss", "hwss"]
METHUSELAHS = ["r_pentomino", "acorn", "diehard", "pi_heptomino", "b_heptomino"]
OSCILLATORS = ["blinker", "pulsar", "pentadecathlon"]
STILL_LIFES = ["block"]
GUNS = ["gosper_gun"]

CATEGORIES: dict[str, list[str]] = {
    "travellers": TRAVELLERS,
    "methuselahs": METHUSELAHS,
    "oscillators": OSCILLATORS,
    "still lifes": STILL_LIFES,
    "guns": GUNS,
}

DEFAULT_PATTERN = "r_pentomino"
DEFAULT_GENERATIONS = 100


# ═══════════════════════════════════════════════════════════════════════
#  Seeds
# ═══════════════════════════════════════════════════════════════════════

def pattern_cells(name: str, rotation: int = 0) -> list[tuple[int, int]]:
    """Live-cell offsets of a library pattern, rotated by 90° steps.

    Offsets are shifted so the smallest row and column are both 0.
    Raises KeyError for an unknown name.
    """
    cells = PATTERNS[name]
    out: list[tuple[int, int]] = []
    for dy, dx in cells:
        for _ in range(rotation % 4):
            dy, dx = dx, -dy
        out.append((dy, dx))
    min_y = min(y for y, _ in out)
    min_x = min(x for _, x in out)
    return [(y - min_y, x - min_x) for y, x in out]


def cells_to_grid(cells: list[tuple[int, int]]) -> NDArray[np.bool_]:
    if not cells:
        return np.zeros((0, 0), dtype=bool)
    h = max(y for y, _ in cells) + 1
    w = max(x for _, x in cells) + 1
    grid = np.zeros((h, w), dtype=bool)
    for y, x in cells:
        grid[y, x] = True
    return grid


def pattern_grid(name: str, rotation: int = 0) -> NDArray[np.bool_]:
    return cells_to_grid(pattern_cells(name, rotation))


def pattern_listing() -> str:
    """Library patterns grouped by category, with their cell counts."""
    lines: list[str] = []
    for category, names in CATEGORIES.items():
        lines.append(f"{category}:")
        for name in names:
            lines.append(f"  {name:<16} {len(PATTERNS[name]):>3} cells")
    return "\n".join(lines)


def random_soup(
    height: int, width: int, density: float = 0.35, seed: int | None = None
) -> NDArray[np.bool_]:
    rng = np.random.default_rng(seed)
    return rng.random((height, width)) < density


# ═══════════════════════════════════════════════════════════════════════
#  Dense reference stepper
# ═══════════════════════════════════════════════════════════════════════

def dense_step(grid: NDArray) -> NDArray[np.bool_]:
    """One generation on a finite array whose outside is permanently dead.

    Matches the quadtree engine as long as nothing reaches the array border.
    """
    g = np.asarray(grid, dtype=bool)
    n = convolve(g.astype(np.int16), NEIGHBOR_KERNEL, mode="constant", cval=0)
    birth = ~g & np.isin(n, list(BIRTH))
    survive = g & np.isin(n, list(SURVIVE))
    return birth | survive


# ═══════════════════════════════════════════════════════════════════════
#  Rendering
# ═══════════════════════════════════════════════════════════════════════

def render_halfblock(grid: NDArray) -> str:
    """Two cell rows per text line using ▀ ▄ █."""
    g = np.asarray(grid, dtype=bool)
    if g.shape[0] % 2:
        g = np.vstack([g, np.zeros((1, g.shape[1]), dtype=bool)])
    lines: list[str] = []
    for top, bot in zip(g[0::2].tolist(), g[1::2].tolist()):
        chars: list[str] = []
        for t, b in zip(top, bot):
            if t and b:
                chars.append(FULL_BLOCK)
            elif t:
                chars.append(UPPER_HALF)
            elif b:
                chars.append(LOWER_HALF)
            else:
                chars.append(" ")
        lines.append("".join(chars).rstrip())
    return "\n".join(lines)


def render_plain(grid: NDArray, alive: str = "1", dead: str = "0") -> str:
    return "\n".join(
        "".join(alive if cell else dead for cell in row)
        for row in np.asarray(grid, dtype=bool).tolist()
    )


def frame_grid(world: World) -> tuple[NDArray[np.bool_], int, int]:
    """Live cells cropped to their bounding box, plus its (top, left)."""
    box = world.bounding_box()
    if box is None:
        return np.zeros((0, 0), dtype=bool), 0, 0
    top, left, bottom, right = box
    grid = np.zeros((bottom - top + 1, right - left + 1), dtype=bool)
    for y, x in world.live_cells():
        grid[y - top, x - left] = True
    return grid, top, left


# ═══════════════════════════════════════════════════════════════════════
#  Stats logger
# ═══════════════════════════════════════════════════════════════════════

class StatsLogger:
    """Writes engine telemetry to CSV for post-hoc tuning."""

    HEADER: ClassVar[str] = "gen,time_s,population,level,nodes,memo_hits,event\n"

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: IO[str] | None = None
        self._t0: float = time.monotonic()

    def open(self) -> None:
        try:
            self._fh = open(self._path, "w")
            self._fh.write(self.HEADER)
            self._fh.flush()
        except OSError:
            self._fh = None

    def log(self, world: World, event: str = "") -> None:
        if self._fh is None:
            return
        t = time.monotonic() - self._t0
        self._fh.write(
            f"{world.generation},{t:.3f},{world.population()},{world.root.level},"
            f"{len(world.store)},{world.store.stats.memo_hits},{event}\n"
        )
        # Flush on events or periodically
        if event or world.generation % 50 == 0:
            try:
                self._fh.flush()
            except OSError:
                pass

    def close(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError:
                pass
            self._fh = None


# ═══════════════════════════════════════════════════════════════════════
#  Command line
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RunConfig:
    """Options for one command-line run."""
    pattern: str | None = DEFAULT_PATTERN
    soup: tuple[int, int] | None = None
    density: float = 0.35
    seed: int | None = None
    rotation: int = 0
    generations: int = DEFAULT_GENERATIONS
    every: int = 10
    plain: bool = False
    delay: float = 0.0
    stats: Path | None = None
    gc_threshold: int | None = None
    verify: bool = False


def _soup_size(text: str) -> tuple[int, int]:
    try:
        h, w = (int(part) for part in text.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected HxW, got {text!r}") from None
    if h <= 0 or w <= 0:
        raise argparse.ArgumentTypeError(f"soup size must be positive, got {text!r}")
    return h, w


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Conway's Game of Life on a memoized quadtree"
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("-p", "--pattern", choices=sorted(PATTERNS), default=None,
                      help=f"Library pattern to seed (default: {DEFAULT_PATTERN})")
    source.add_argument("--soup", type=_soup_size, default=None, metavar="HxW",
                      help="Seed a random soup of this size instead")
    parser.add_argument("--density", type=float, default=0.35,
                        help="Live-cell probability for --soup (default: 0.35)")
    parser.add_argument("--seed", type=int, default=None,
                        help="RNG seed for --soup")
    parser.add_argument("--rotation", type=int, default=0,
                        help="Rotate the pattern by this many quarter turns")
    parser.add_argument("-n", "--generations", type=int, default=DEFAULT_GENERATIONS,
                        help=f"Generations to run (default: {DEFAULT_GENERATIONS})")
    parser.add_argument("--every", type=int, default=10,
                        help="Print a frame every K generations (0: first and last only)")
    parser.add_argument("--plain", action="store_true",
                        help="Print 1/0 rows instead of half-blocks")
    parser.add_argument("--delay", type=float, default=0.0,
                        help="Milliseconds to sleep between generations")
    parser.add_argument("--stats", type=Path, default=None,
                        help="Write per-generation telemetry CSV to this path")
    parser.add_argument("--gc-threshold", type=int, default=None,
                        help="Collect unreachable nodes when the store exceeds N")
    parser.add_argument("--verify", action="store_true",
                        help="Check every generation against the dense stepper")
    parser.add_argument("--list", action="store_true",
                        help="List library patterns and exit")
    return parser


def parse_args(argv: list[str] | None = None) -> RunConfig | None:
    """Parse the command line; None means the run is already handled (--list)."""
    args = build_parser().parse_args(argv)
    if args.list:
        print(pattern_listing())
        return None
    pattern = None if args.soup is not None else (args.pattern or DEFAULT_PATTERN)
    return RunConfig(
        pattern=pattern,
        soup=args.soup,
        density=args.density,
        seed=args.seed,
        rotation=args.rotation,
        generations=max(0, args.generations),
        every=max(0, args.every),
        plain=args.plain,
        delay=max(0.0, args.delay),
        stats=args.stats,
        gc_threshold=args.gc_threshold,
        verify=args.verify,
    )


def seed_grid(config: RunConfig) -> NDArray[np.bool_]:
    if config.soup is not None:
        h, w = config.soup
        return random_soup(h, w, config.density, config.seed)
    return pattern_grid(config.pattern or DEFAULT_PATTERN, config.rotation)


def print_frame(world: World, plain: bool = False) -> None:
    grid, top, left = frame_grid(world)
    print(f"gen {world.generation}  pop {world.population():,}  "
          f"level {world.root.level}  nodes {len(world.store):,}  "
          f"origin ({top}, {left})")
    if grid.size:
        print(render_plain(grid) if plain else render_halfblock(grid))
    print()


def run(config: RunConfig) -> int:
    """Run the simulation described by ``config``; returns a process exit code."""
    seed = seed_grid(config)
    world = World.from_cells(seed, gc_threshold=config.gc_threshold)

    label = config.pattern if config.soup is None else (
        f"soup {config.soup[0]}x{config.soup[1]} @ {config.density:.2f}"
    )
    print(f"Seed: {label}  Generations: {config.generations}")
    print()

    # Dense mirror sized so nothing can reach its border
    margin = config.generations + 2
    dense: NDArray[np.bool_] | None = None
    if config.verify:
        dense = np.zeros(
            (seed.shape[0] + 2 * margin, seed.shape[1] + 2 * margin), dtype=bool
        )
        dense[margin : margin + seed.shape[0], margin : margin + seed.shape[1]] = seed

    logger: StatsLogger | None = None
    if config.stats is not None:
        logger = StatsLogger(config.stats)
        logger.open()
        logger.log(world, "seed")

    print_frame(world, config.plain)
    status = 0
    try:
        for _ in range(config.generations):
            event = world.next_gen()
            if logger is not None:
                logger.log(world, event)

            if dense is not None:
                dense = dense_step(dense)
                ys, xs = np.nonzero(dense)
                expected = {(int(y) - margin, int(x) - margin) for y, x in zip(ys, xs)}
                if expected != world.live_cells():
                    print(f"MISMATCH at generation {world.generation}: "
                          f"dense pop {len(expected)}, quadtree pop {world.population()}")
                    status = 1
                    break

            last = world.generation == config.generations
            if last or (config.every and world.generation % config.every == 0):
                print_frame(world, config.plain)

            if config.delay:
                time.sleep(config.delay / 1000.0)
    except KeyboardInterrupt:
        pass
    finally:
        if logger is not None:
            logger.close()

    stats = world.store.stats
    print(f"Done: gen {world.generation}  pop {world.population():,}  "
          f"nodes {len(world.store):,}  evolved {stats.evolved:,}  "
          f"memo hits {stats.memo_hits:,}  collected {stats.collected:,}")
    if config.verify and status == 0:
        print("Verified against dense stepper.")
    return status


def main(argv: list[str] | None = None) -> int:
    config = parse_args(argv)
    if config is None:
        return 0
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
