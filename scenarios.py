"""
Scenario Preset System
Ready-made path/launch/bucket setups used by the server's number keys and by
the scenario tests. Each preset builds its inputs, starts a run and, unless
``run=False``, ticks it to completion while recording the energy history.
"""

from typing import Optional

from geometry import InvalidPathError, PathSegment, Point, SegmentType
from physics import Bucket, SimConfig, Velocity, start_run, tick

# Tick ceiling for presets whose outcome depends on slope boosts
_MAX_TICKS = 5000


def _line(*pts) -> PathSegment:
    return PathSegment(SegmentType.LINE, tuple(Point(x, y) for x, y in pts))


def _curve(*pts) -> PathSegment:
    return PathSegment(SegmentType.CURVE, tuple(Point(x, y) for x, y in pts))


def _play(path, velocity: Velocity, friction: float, bucket: Optional[Bucket] = None,
          config: Optional[SimConfig] = None, run: bool = True) -> dict:
    result = {
        "path": list(path), "velocity": velocity, "friction": friction,
        "bucket": bucket, "state": None, "world": None, "initial": None,
        "history": [], "positions": [], "ticks": 0, "error": None,
    }
    try:
        state, world = start_run(path, velocity, friction, bucket=bucket,
                                 config=config or SimConfig())
    except InvalidPathError as exc:
        result["error"] = str(exc)
        return result

    result.update(state=state, world=world, initial=state)
    if run:
        while not state.finished:
            state = tick(state, world)
            result["history"].append(state.energy)
            result["positions"].append(state.ball.position)
        result["state"] = state
        result["ticks"] = state.ticks
    return result


class ScenarioPreset:
    """Each preset: build inputs → start → (optionally) run → result dict."""

    @staticmethod
    def scenario_1_vertical_drop(run=True) -> dict:
        """Vertical line under the launch point; the ball is caught on the first tick."""
        return _play([_line((100, 50), (100, 650))], Velocity(0.0, 0.0), 0.98, run=run)

    @staticmethod
    def scenario_2_bucket_shot(run=True) -> dict:
        """Horizontal launch arcing past a short ramp into a bucket at x=300."""
        bucket = Bucket(x=300.0)
        return _play([_line((250, 400), (280, 650))], Velocity(2.0, 0.0), 0.98,
                     bucket=bucket, run=run)

    @staticmethod
    def scenario_3_curved_ramp(run=True) -> dict:
        """Ball drops onto a curved chain and rides it down to the ground."""
        path = [_curve((150, 80), (350, 300), (600, 420), (850, 600))]
        return _play(path, Velocity(1.0, 0.0), 0.95,
                     config=SimConfig(max_ticks=_MAX_TICKS), run=run)

    @staticmethod
    def scenario_4_free_fall(run=True) -> dict:
        """Undamped drop; the only path lies below the ground so nothing intervenes."""
        return _play([_line((100, 700), (400, 700))], Velocity(0.0, 0.0), 1.0, run=run)

    @staticmethod
    def scenario_5_empty_path(run=True) -> dict:
        """No segments: the run is refused before any tick."""
        return _play([], Velocity(2.0, 0.0), 0.98, run=run)
