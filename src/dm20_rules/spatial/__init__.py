"""
Spatial reasoning: grid distance, area effects, pathfinding, line of sight
and cover.
"""

from .movement import MovementGrid, MovementMode, adjacent_cells, find_path, reachable_cells
from .positioning import (
    AoEShapeKind,
    AreaOfEffect,
    DistanceMode,
    Position,
    cells_in_area,
    measure_distance,
    targets_in_area,
)
from .sight import CoverLevel, Obstacle, check_cover, check_line_of_sight

__all__ = [
    "MovementGrid",
    "MovementMode",
    "adjacent_cells",
    "find_path",
    "reachable_cells",
    "AoEShapeKind",
    "AreaOfEffect",
    "DistanceMode",
    "Position",
    "cells_in_area",
    "measure_distance",
    "targets_in_area",
    "CoverLevel",
    "Obstacle",
    "check_cover",
    "check_line_of_sight",
]
