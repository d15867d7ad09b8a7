"""
2D Ball-Path Physics Engine
Fixed-step integration, ground/path/bucket contact, energy bookkeeping.

Units are canvas pixels per tick; y grows downward, so "height" is measured
upward from the ground line.
"""

import enum
import math
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Tuple

import numpy as np

from geometry import (
    Path, Point, closest_approach, nearest_index, path_slope, sample_path,
    validate_path,
)

# ──────────────────────────────────────────────
# Constants (canvas units, per-tick)
# ──────────────────────────────────────────────
# SimConfig.from_module() and Bucket read these by name when a run starts or a
# bucket is placed, so a params editor can mutate them live:
#   import physics as _phys;  _phys.GRAVITY = 0.5
BALL_RADIUS: float = 15.0
BALL_MASS: float = 1.0
GRAVITY: float = 0.3            # added to vy every tick
GROUND_Y: float = 650.0         # ground line (canvas y)
START_Y: float = 50.0           # launch height of the ball center
TOLERANCE_PERCENTAGE: float = 10.0

# Bucket defaults
BUCKET_WIDTH: float = 80.0
BUCKET_HEIGHT: float = 60.0

# Numerical thresholds
SETTLE_THRESHOLD: float = 0.1   # |vx| and |vy| below this → settled
SLOPE_GAIN: float = 1.0         # vx boost per unit of local path slope

# Safety bound on run length (None = unbounded)
MAX_TICKS: Optional[int] = 36_000


@dataclass(frozen=True)
class SimConfig:
    """Physical constants frozen for the duration of one run."""
    ball_radius: float = BALL_RADIUS
    ball_mass: float = BALL_MASS
    gravity: float = GRAVITY
    ground_y: float = GROUND_Y
    tolerance_percent: float = TOLERANCE_PERCENTAGE
    start_y: float = START_Y
    max_ticks: Optional[int] = MAX_TICKS

    # camelCase option name → field
    OPTIONS = {
        "ballRadius": "ball_radius",
        "ballMass": "ball_mass",
        "gravity": "gravity",
        "groundY": "ground_y",
        "tolerancePercent": "tolerance_percent",
    }

    @classmethod
    def from_module(cls) -> "SimConfig":
        """Snapshot the current (possibly live-edited) module constants."""
        return cls(
            ball_radius=BALL_RADIUS,
            ball_mass=BALL_MASS,
            gravity=GRAVITY,
            ground_y=GROUND_Y,
            tolerance_percent=TOLERANCE_PERCENTAGE,
            start_y=START_Y,
            max_ticks=MAX_TICKS,
        )

    @classmethod
    def from_options(cls, options: Mapping[str, Any],
                     base: Optional["SimConfig"] = None) -> "SimConfig":
        """Apply recognised camelCase options on top of ``base`` (module defaults).

        Unrecognised keys are not applied.
        """
        base = base or cls.from_module()
        overrides = {cls.OPTIONS[k]: float(v) for k, v in options.items() if k in cls.OPTIONS}
        return replace(base, **overrides)


class RunStatus(enum.Enum):
    IDLE = 0
    RUNNING = 1
    SETTLED = 2
    ABORTED = 3


class ContactKind(enum.Enum):
    NONE = 0
    GROUND = 1
    PATH = 2
    BUCKET_CAPTURE = 3


@dataclass(frozen=True)
class Velocity:
    vx: float = 0.0
    vy: float = 0.0


@dataclass(frozen=True)
class BallState:
    position: Point
    velocity: Velocity = field(default_factory=Velocity)
    grounded: bool = False


@dataclass
class Bucket:
    """Target zone centred on ``x``; ``y`` is the ground-anchored bottom edge."""
    x: float
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    is_hit: bool = False

    def __post_init__(self):
        # Unset dimensions follow the live module constants
        if self.y is None:
            self.y = GROUND_Y
        if self.width is None:
            self.width = BUCKET_WIDTH
        if self.height is None:
            self.height = BUCKET_HEIGHT

    @property
    def left(self) -> float:
        return self.x - self.width / 2

    @property
    def right(self) -> float:
        return self.x + self.width / 2

    @property
    def top(self) -> float:
        return self.y - self.height

    def contains(self, x: float, y: float, radius: float) -> bool:
        """Ball center within the horizontal band, bottom edge between top and base."""
        bottom = y + radius
        return self.left <= x <= self.right and self.top <= bottom <= self.y


@dataclass(frozen=True)
class EnergySnapshot:
    kinetic: float = 0.0
    potential: float = 0.0
    total: float = 0.0
    loss: float = 0.0


@dataclass(frozen=True)
class World:
    """Everything a tick reads but never changes."""
    sampled_path: np.ndarray
    friction: float
    bucket: Optional[Bucket] = None
    config: SimConfig = field(default_factory=SimConfig.from_module)


@dataclass(frozen=True)
class RunState:
    ball: BallState
    initial_total: float
    energy: EnergySnapshot
    status: RunStatus = RunStatus.RUNNING
    in_bucket: bool = False
    contact: ContactKind = ContactKind.NONE
    ticks: int = 0
    abort_reason: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.status in (RunStatus.SETTLED, RunStatus.ABORTED)


# ──────────────────────────────────────────────
# Energy
# ──────────────────────────────────────────────
def energy_of(ball: BallState, initial_total: float,
              config: Optional[SimConfig] = None) -> EnergySnapshot:
    """Kinetic, potential (above ground), total, and loss against the run's start."""
    config = config or SimConfig.from_module()
    vx, vy = ball.velocity.vx, ball.velocity.vy
    kinetic = 0.5 * config.ball_mass * (vx * vx + vy * vy)
    height = config.ground_y - ball.position.y
    potential = config.ball_mass * config.gravity * height
    total = kinetic + potential
    return EnergySnapshot(kinetic, potential, total, initial_total - total)


# ──────────────────────────────────────────────
# Contact model
# ──────────────────────────────────────────────
@dataclass
class _Kinematics:
    """Mutable scratch copy of the ball used while resolving one tick."""
    x: float
    y: float
    vx: float
    vy: float
    grounded: bool


def _capture_in_bucket(k: _Kinematics, bucket: Bucket, radius: float) -> None:
    bucket.is_hit = True
    k.y = bucket.top - radius
    k.vx = 0.0
    k.vy = 0.0
    k.grounded = True


def _apply_ground(k: _Kinematics, world: World) -> bool:
    """Clamp onto the ground line; one friction scaling on contact."""
    cfg = world.config
    if k.y + cfg.ball_radius < cfg.ground_y:
        return False
    k.y = cfg.ground_y - cfg.ball_radius
    k.vy = 0.0
    k.grounded = True
    k.vx *= world.friction
    return True


def _apply_path(k: _Kinematics, world: World) -> bool:
    """Rest on the path when sunk into it; slope nudges vx while grounded.

    Returns True when the ball was clamped onto the path this tick.
    """
    cfg = world.config
    sampled = world.sampled_path
    position = Point(k.x, k.y)
    hit = closest_approach(position, sampled, cfg.ball_radius)
    if hit is None:
        k.grounded = False
        return False

    contact_point, _ = hit
    clamped = False
    target_y = contact_point.y - cfg.ball_radius
    if k.y > target_y:
        k.y = target_y
        k.vy = 0.0
        k.grounded = True
        clamped = True

    # Slope is read around the nearest sampled point, not the contact pair
    idx = nearest_index(Point(k.x, k.y), sampled)
    slope = path_slope(sampled, idx)
    if slope is not None and k.grounded:
        k.vx += slope * SLOPE_GAIN
    return clamped


def _resolve_contacts(k: _Kinematics, world: World, in_bucket: bool) -> Tuple[bool, ContactKind]:
    """Apply bucket → ground → path rules in priority order.

    Returns the updated capture latch and the highest-priority rule that
    repositioned the ball.
    """
    cfg = world.config
    outcome = ContactKind.NONE

    if world.bucket is not None and not in_bucket:
        if world.bucket.contains(k.x, k.y, cfg.ball_radius):
            _capture_in_bucket(k, world.bucket, cfg.ball_radius)
            return True, ContactKind.BUCKET_CAPTURE

    if in_bucket:
        return True, outcome

    if _apply_ground(k, world):
        outcome = ContactKind.GROUND
    if _apply_path(k, world) and outcome == ContactKind.NONE:
        outcome = ContactKind.PATH
    return False, outcome


# ──────────────────────────────────────────────
# Integrator
# ──────────────────────────────────────────────
def start_run(path: Path, velocity: Velocity, friction: float,
              bucket: Optional[Bucket] = None,
              config: Optional[SimConfig] = None) -> Tuple[RunState, World]:
    """Validate the path, sample it, and build the initial run state.

    The bucket, if any, is re-anchored on the ground line and its hit flag
    cleared.

    Raises:
        InvalidPathError: when the path is empty or has a degenerate segment.
        ValueError: when friction lies outside (0, 1].
    """
    validate_path(path)
    friction = float(friction)
    if not 0.0 < friction <= 1.0:
        raise ValueError(f"friction must be in (0, 1], got {friction}")
    config = config or SimConfig.from_module()
    sampled = sample_path(path)
    if bucket is not None:
        bucket.y = config.ground_y
        bucket.is_hit = False

    world = World(sampled_path=sampled, friction=friction, bucket=bucket, config=config)
    ball = BallState(Point(float(sampled[0, 0]), config.start_y),
                     Velocity(float(velocity.vx), float(velocity.vy)))
    initial = energy_of(ball, 0.0, config)
    initial_total = initial.total
    energy = replace(initial, loss=0.0)
    return RunState(ball=ball, initial_total=initial_total, energy=energy), world


def tick(state: RunState, world: World) -> RunState:
    """Advance one fixed step. Terminal states are returned unchanged."""
    if state.status != RunStatus.RUNNING:
        return state

    cfg = world.config
    ball = state.ball
    ticks = state.ticks + 1

    vx = ball.velocity.vx
    vy = ball.velocity.vy + cfg.gravity
    x = ball.position.x + vx
    y = ball.position.y + vy

    if not (math.isfinite(x) and math.isfinite(y)):
        # Blowup: keep the last good ball and snapshot as final
        return replace(state, status=RunStatus.ABORTED, ticks=ticks,
                       abort_reason="non_finite", contact=ContactKind.NONE)

    k = _Kinematics(x, y, vx, vy, ball.grounded)
    in_bucket, contact = _resolve_contacts(k, world, state.in_bucket)

    if not in_bucket:
        k.vx *= world.friction

    status = RunStatus.RUNNING
    reason = None
    if abs(k.vx) < SETTLE_THRESHOLD and abs(k.vy) < SETTLE_THRESHOLD:
        k.vx = 0.0
        k.vy = 0.0
        status = RunStatus.SETTLED
    elif cfg.max_ticks is not None and ticks >= cfg.max_ticks:
        status = RunStatus.ABORTED
        reason = "tick_limit"

    new_ball = BallState(Point(k.x, k.y), Velocity(k.vx, k.vy), k.grounded)
    return RunState(
        ball=new_ball,
        initial_total=state.initial_total,
        energy=energy_of(new_ball, state.initial_total, cfg),
        status=status,
        in_bucket=in_bucket,
        contact=contact,
        ticks=ticks,
        abort_reason=reason,
    )


def simulate(state: RunState, world: World) -> RunState:
    """Tick until the run settles or aborts.

    Relies on ``world.config.max_ticks`` to terminate runs that never damp out.
    """
    while not state.finished:
        state = tick(state, world)
    return state
