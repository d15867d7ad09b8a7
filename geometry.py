"""
Path geometry for the ball-path simulator.

Authored path segments are turned into a dense sampled point sequence once per
run; the integrator then queries that sequence for contact every tick.
"""

import enum
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

# ──────────────────────────────────────────────
# Sampling constants
# ──────────────────────────────────────────────
LINE_STEP: float = 5.0      # units per interpolation step on straight segments
CURVE_STEPS: int = 30       # fixed steps per control-point span on curves
CONTACT_MARGIN: float = 3.0  # added to the ball radius for contact detection


class InvalidPathError(ValueError):
    """Path cannot be simulated (no segments, or a segment with < 2 points)."""


@dataclass(frozen=True)
class Point:
    x: float
    y: float


class SegmentType(enum.Enum):
    LINE = "line"
    CURVE = "curve"


@dataclass(frozen=True)
class PathSegment:
    """A sealed path segment: ordered control points plus interpretation."""
    type: SegmentType
    points: Tuple[Point, ...]

    def __post_init__(self):
        seg_type = self.type if isinstance(self.type, SegmentType) else SegmentType(self.type)
        pts = tuple(p if isinstance(p, Point) else Point(float(p[0]), float(p[1]))
                    for p in self.points)
        object.__setattr__(self, "type", seg_type)
        object.__setattr__(self, "points", pts)


Path = Sequence[PathSegment]


def validate_path(path: Path) -> None:
    """Raise InvalidPathError unless every segment of a non-empty path has >= 2 points."""
    if not path:
        raise InvalidPathError("path has no segments")
    for i, seg in enumerate(path):
        if len(seg.points) < 2:
            raise InvalidPathError(f"segment {i} has {len(seg.points)} point(s), need at least 2")


# ──────────────────────────────────────────────
# Sampling
# ──────────────────────────────────────────────
def _sample_line(p1: Point, p2: Point) -> np.ndarray:
    distance = float(np.hypot(p2.x - p1.x, p2.y - p1.y))
    steps = max(int(distance // LINE_STEP), 1)
    t = np.arange(steps + 1) / steps
    xs = p1.x + (p2.x - p1.x) * t
    ys = p1.y + (p2.y - p1.y) * t
    return np.column_stack((xs, ys))


def _sample_curve(p1: Point, p2: Point) -> np.ndarray:
    """Quadratic Bezier from p1 to p2 with the span midpoint as control.

    Authored points are pass-through anchors, not control handles, so the
    arc between two anchors degenerates to the straight chord.
    """
    t = np.arange(CURVE_STEPS + 1) / CURVE_STEPS
    u = 1.0 - t
    mx = (p1.x + p2.x) / 2
    my = (p1.y + p2.y) / 2
    xs = u * u * p1.x + 2 * u * t * mx + t * t * p2.x
    ys = u * u * p1.y + 2 * u * t * my + t * t * p2.y
    return np.column_stack((xs, ys))


def sample_path(path: Path) -> np.ndarray:
    """Densely sample a path into an (N, 2) array of points.

    Order follows segments and control points; points shared at joins are
    kept twice. An empty path gives an empty (0, 2) array.
    """
    chunks = []
    for seg in path:
        sampler = _sample_line if seg.type == SegmentType.LINE else _sample_curve
        for p1, p2 in zip(seg.points[:-1], seg.points[1:]):
            chunks.append(sampler(p1, p2))
    if not chunks:
        return np.empty((0, 2), dtype=float)
    return np.concatenate(chunks)


# ──────────────────────────────────────────────
# Contact queries
# ──────────────────────────────────────────────
def closest_approach(position: Point, sampled: np.ndarray,
                     ball_radius: float) -> Optional[Tuple[Point, int]]:
    """First sub-segment (in path order) the ball touches, with its contact point.

    Each consecutive pair is treated as a finite segment: the ball center is
    projected onto it and the parameter clamped to [0, 1]. The first pair whose
    clamped point lies within ``ball_radius + CONTACT_MARGIN`` wins, even when
    a later pair is nearer.
    """
    if len(sampled) < 2:
        return None

    p1 = sampled[:-1]
    p2 = sampled[1:]
    a = position.x - p1[:, 0]
    b = position.y - p1[:, 1]
    c = p2[:, 0] - p1[:, 0]
    d = p2[:, 1] - p1[:, 1]

    dot = a * c + b * d
    len_sq = c * c + d * d
    # Zero-length pairs resolve to their first point
    param = np.divide(dot, len_sq, out=np.full_like(dot, -1.0), where=len_sq != 0)

    xx = np.where(param < 0, p1[:, 0], np.where(param > 1, p2[:, 0], p1[:, 0] + param * c))
    yy = np.where(param < 0, p1[:, 1], np.where(param > 1, p2[:, 1], p1[:, 1] + param * d))

    dx = position.x - xx
    dy = position.y - yy
    distance = np.sqrt(dx * dx + dy * dy)

    hits = np.flatnonzero(distance < ball_radius + CONTACT_MARGIN)
    if hits.size == 0:
        return None
    i = int(hits[0])
    return Point(float(xx[i]), float(yy[i])), i


def nearest_index(position: Point, sampled: np.ndarray) -> int:
    """Index of the sampled point nearest the ball center (first minimum wins)."""
    dist = np.hypot(sampled[:, 0] - position.x, sampled[:, 1] - position.y)
    return int(np.argmin(dist))


def path_slope(sampled: np.ndarray, index: int) -> Optional[float]:
    """dy/dx from ``sampled[index]`` to its successor, None if undefined."""
    if index >= len(sampled) - 1:
        return None
    dx = float(sampled[index + 1, 0] - sampled[index, 0])
    if dx == 0:
        return None
    return float(sampled[index + 1, 1] - sampled[index, 1]) / dx
