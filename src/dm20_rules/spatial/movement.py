"""
Grid pathfinding for movement planning.

Steps go to any of the eight neighbouring squares. Every step costs 5 ft,
diagonals included (the same rule as ``grid_5e`` distance), and 10 ft when
the square entered is difficult terrain or water. Blocked squares (walls,
movement-blocking props) are never entered; occupied squares are only
avoided when ``creatures_block`` is set, and never count against the
destination of a path.

Nothing here touches an encounter: the caller describes the grid in a
``MovementGrid``.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from enum import Enum

from .positioning import FEET_PER_SQUARE

Cell = tuple[int, int]

# Cardinal steps first so ties prefer straight lines
STEPS: tuple[Cell, ...] = (
    (0, -1), (1, 0), (0, 1), (-1, 0),
    (-1, -1), (1, -1), (1, 1), (-1, 1),
)


class MovementMode(str, Enum):
    PATH = "path"
    REACH = "reach"
    ADJACENT = "adjacent"


@dataclass
class MovementGrid:
    """What a mover needs to know about the battle grid."""

    width: int = 20
    height: int = 20
    blocked: dict[Cell, str] = field(default_factory=dict)
    difficult: set[Cell] = field(default_factory=set)
    water: set[Cell] = field(default_factory=set)
    occupants: dict[Cell, str] = field(default_factory=dict)
    creatures_block: bool = False

    def in_bounds(self, cell: Cell) -> bool:
        return 0 <= cell[0] < self.width and 0 <= cell[1] < self.height

    def step_cost(self, cell: Cell) -> int:
        if cell in self.difficult or cell in self.water:
            return FEET_PER_SQUARE * 2
        return FEET_PER_SQUARE

    def can_enter(self, cell: Cell, goal: Cell | None = None) -> bool:
        if not self.in_bounds(cell) or cell in self.blocked:
            return False
        if self.creatures_block and cell in self.occupants and cell != goal:
            return False
        return True

    def neighbours(self, cell: Cell) -> list[Cell]:
        return [(cell[0] + dx, cell[1] + dy) for dx, dy in STEPS]


@dataclass
class PathResult:
    cells: list[Cell]
    cost_feet: int
    difficult_squares: int = 0

    @property
    def squares(self) -> int:
        return len(self.cells) - 1


def _heuristic(a: Cell, b: Cell) -> int:
    return max(abs(a[0] - b[0]), abs(a[1] - b[1])) * FEET_PER_SQUARE


def find_path(grid: MovementGrid, start: Cell, goal: Cell) -> PathResult | None:
    """Cheapest path from ``start`` to ``goal`` (A* over the step costs).

    Returns:
        The path including both ends, or None when the goal cannot be
        reached.
    """
    if start == goal:
        return PathResult(cells=[start], cost_feet=0)
    if not grid.can_enter(goal, goal):
        return None

    counter = 0
    frontier: list[tuple[int, int, Cell]] = [(_heuristic(start, goal), counter, start)]
    came_from: dict[Cell, Cell] = {}
    spent: dict[Cell, int] = {start: 0}

    while frontier:
        _, _, cell = heapq.heappop(frontier)
        if cell == goal:
            break
        for nxt in grid.neighbours(cell):
            if not grid.can_enter(nxt, goal):
                continue
            cost = spent[cell] + grid.step_cost(nxt)
            if nxt in spent and spent[nxt] <= cost:
                continue
            spent[nxt] = cost
            came_from[nxt] = cell
            counter += 1
            heapq.heappush(frontier, (cost + _heuristic(nxt, goal), counter, nxt))

    if goal not in spent:
        return None

    cells = [goal]
    while cells[-1] != start:
        cells.append(came_from[cells[-1]])
    cells.reverse()
    difficult = sum(1 for c in cells[1:] if grid.step_cost(c) > FEET_PER_SQUARE)
    return PathResult(cells=cells, cost_feet=spent[goal], difficult_squares=difficult)


def reachable_cells(grid: MovementGrid, start: Cell, budget: int) -> dict[Cell, int]:
    """Every square reachable within ``budget`` feet, with its cheapest cost.

    The starting square is not included. Occupied squares cannot be ended
    in when ``creatures_block`` is set.
    """
    spent: dict[Cell, int] = {start: 0}
    frontier: list[tuple[int, Cell]] = [(0, start)]
    while frontier:
        cost, cell = heapq.heappop(frontier)
        if cost > spent[cell]:
            continue
        for nxt in grid.neighbours(cell):
            if not grid.can_enter(nxt):
                continue
            total = cost + grid.step_cost(nxt)
            if total > budget or (nxt in spent and spent[nxt] <= total):
                continue
            spent[nxt] = total
            heapq.heappush(frontier, (total, nxt))
    del spent[start]
    return dict(sorted(spent.items(), key=lambda item: (item[1], item[0][1], item[0][0])))


def adjacent_cells(grid: MovementGrid, cell: Cell) -> list[tuple[Cell, str]]:
    """The up to eight squares around ``cell`` with what is in each."""
    result = []
    for nxt in grid.neighbours(cell):
        if not grid.in_bounds(nxt):
            continue
        if nxt in grid.blocked:
            status = f"blocked ({grid.blocked[nxt]})"
        elif nxt in grid.occupants:
            status = f"occupied ({grid.occupants[nxt]})"
        elif nxt in grid.water:
            status = "water"
        elif nxt in grid.difficult:
            status = "difficult terrain"
        else:
            status = "open"
        result.append((nxt, status))
    return result
