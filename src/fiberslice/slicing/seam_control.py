"""
Seam Control — start point selection for perimeter loops.

Loops start at their sharpest corner so the seam hides in a corner, and
consecutive layers of a prismatic part place their seams at the same spot.
"""

import math
from typing import List, Tuple

Point2D = Tuple[float, float]
Polyline = List[Point2D]


def _is_closed(contour: Polyline) -> bool:
    return (
        len(contour) > 1 and
        abs(contour[0][0] - contour[-1][0]) < 1e-9 and
        abs(contour[0][1] - contour[-1][1]) < 1e-9
    )


def turn_angle(prev: Point2D, vertex: Point2D, nxt: Point2D) -> float:
    """
    Direction change at ``vertex`` in degrees.

    0 means the path continues straight, 180 means it doubles back.
    """
    ax, ay = vertex[0] - prev[0], vertex[1] - prev[1]
    bx, by = nxt[0] - vertex[0], nxt[1] - vertex[1]
    la = math.hypot(ax, ay)
    lb = math.hypot(bx, by)
    if la == 0 or lb == 0:
        return 0.0
    cos_t = max(-1.0, min(1.0, (ax * bx + ay * by) / (la * lb)))
    return math.degrees(math.acos(cos_t))


def rotate_contour(contour: Polyline, start_index: int) -> Polyline:
    """Rotate contour so that start_index becomes the first point."""
    if not contour or start_index == 0:
        return list(contour)
    if _is_closed(contour):
        # Remove duplicate closing point, rotate, then re-close
        open_contour = contour[:-1]
        idx = start_index % len(open_contour)
        rotated = open_contour[idx:] + open_contour[:idx]
        rotated.append(rotated[0])
        return rotated
    idx = start_index % len(contour)
    return contour[idx:] + contour[:idx]


def sharpest_corner_index(contour: Polyline) -> int:
    """
    Index of the vertex with the largest turn angle of a closed loop.

    Ties go to the lowest-left vertex so the choice is stable between layers.
    """
    ring = contour[:-1] if _is_closed(contour) else list(contour)
    n = len(ring)
    if n < 3:
        return 0
    best_idx = 0
    best_key = None
    for i in range(n):
        angle = round(turn_angle(ring[i - 1], ring[i], ring[(i + 1) % n]), 6)
        key = (-angle, round(ring[i][1], 6), round(ring[i][0], 6))
        if best_key is None or key < best_key:
            best_key = key
            best_idx = i
    return best_idx


def place_seam_sharpest(contour: Polyline) -> Polyline:
    """Start a closed loop at its sharpest corner."""
    if not contour or len(contour) < 4:
        return list(contour)
    return rotate_contour(contour, sharpest_corner_index(contour))
