"""
SimulationController — Layer 2 (Session Logic)

Owns the authoring session (path, bucket, launch settings, predictions) and
the run in progress. The renderer (or server loop) drives it:
  ctrl.step()                 — advance one tick while a run is active
  ctrl.pending_events         — list of dicts to consume and act on
  ctrl.state / ctrl.bucket    — read-only references for drawing
"""

import json
import logging
from dataclasses import replace
from typing import Optional

from geometry import PathSegment, Point, SegmentType
from physics import (
    Bucket, RunState, RunStatus, SimConfig, Velocity, World, start_run, tick,
)
from scoring import Metric, evaluate_predictions, summarize

log = logging.getLogger(__name__)


# ── Default info-bar message ───────────────────────────────────────────────────
DEFAULT_INFO_MSG = (
    "Click to add points  [L] Line  [C] Curve  [Enter] Complete  "
    "[B] Bucket  [P] Predict  [Space] Run  [S] Stop  [X] Clear"
)

BUCKET_HIT_MSG = "Perfect aim! The ball landed right in the bucket!"
BUCKET_MISS_MSG = "Better luck next time! Try adjusting your path or speed."


class SimulationController:
    """Layer 2: authoring state + run orchestration."""

    # ── Class-level constants ─────────────────────────────────────────────────
    DEFAULT_FRICTION = 0.98
    DEFAULT_SPEED    = 2.0
    BUCKET_SNAP      = 20.0     # clicks this close above the ground place a bucket
    TRAIL_MAX_POINTS = 200

    # ── Constructor ───────────────────────────────────────────────────────────

    def __init__(self, options: Optional[dict] = None):
        # Recognised keys: ballRadius, ballMass, gravity, groundY, tolerancePercent
        self.options: dict = dict(options or {})

        # Authoring
        self.path: list[PathSegment] = []
        self.current_points: list[Point] = []
        self.draw_mode = SegmentType.LINE
        self.bucket: Optional[Bucket] = None
        self.bucket_placement_mode = False

        # Launch settings
        self.friction         = self.DEFAULT_FRICTION
        self.speed_mode       = "combined"     # "combined"|"separate"
        self.initial_speed    = self.DEFAULT_SPEED
        self.horizontal_speed = self.DEFAULT_SPEED
        self.vertical_speed   = 0.0

        # Predictions (raw user entries, parsed at scoring time)
        self.predictions: dict[Metric, str] = {}

        # Run state
        self.mode = "idle"          # "idle"|"running"|"finished"
        self.state: Optional[RunState] = None
        self.world: Optional[World] = None
        self.final_energy = None
        self.prediction_results: list = []
        self.trail_positions: list = []

        # Status / info messages (L3 reads these to update text)
        self.status_msg = ""
        self.info_msg   = DEFAULT_INFO_MSG

        # Event queue (L3 rendering commands)
        self.pending_events: list[dict] = []

    # ──────────────────────────────────────────────────────────────────────────
    # Main loop
    # ──────────────────────────────────────────────────────────────────────────

    def step(self) -> None:
        """Advance the active run by one tick. Called every frame by L3."""
        if self.mode != "running":
            return

        was_in_bucket = self.state.in_bucket
        self.state = tick(self.state, self.world)
        pos = self.state.ball.position
        self.trail_positions.append((pos.x, pos.y))
        if len(self.trail_positions) > self.TRAIL_MAX_POINTS:
            del self.trail_positions[0]

        if self.state.in_bucket and not was_in_bucket:
            self.pending_events.append({"type": "bucket_hit", "x": pos.x, "y": pos.y})
            log.info("[RUN] bucket hit at tick %d", self.state.ticks)

        if self.state.finished:
            self._on_run_finished()

    def _on_run_finished(self) -> None:
        st = self.state
        self.mode = "finished"
        self._score(st)

        if st.status == RunStatus.ABORTED:
            self.status_msg = f"Run aborted ({st.abort_reason}) after {st.ticks} ticks."
            log.warning("[RUN] aborted: %s after %d ticks", st.abort_reason, st.ticks)
        else:
            self.status_msg = f"Settled after {st.ticks} ticks."
            log.info("[RUN] settled after %d ticks", st.ticks)

        self.pending_events.append({
            "type": "run_finished",
            "status": st.status.name,
            "reason": st.abort_reason,
            "ticks": st.ticks,
        })
        if self.bucket is not None:
            self.pending_events.append({
                "type": "bucket_result",
                "hit": self.bucket.is_hit,
                "msg": BUCKET_HIT_MSG if self.bucket.is_hit else BUCKET_MISS_MSG,
            })

    def _score(self, st: RunState) -> None:
        self.final_energy = st.energy
        self.prediction_results = evaluate_predictions(
            self.predictions, st.initial_total, st.energy,
            self.world.config.tolerance_percent,
        )
        if self.prediction_results:
            summary = self.summary
            self.pending_events.append({
                "type": "prediction_results",
                "results": [r.to_dict() for r in self.prediction_results],
                "correct": summary.correct,
                "total": summary.total,
                "msg": summary.message,
            })

    @property
    def summary(self):
        return summarize(self.prediction_results)

    # ──────────────────────────────────────────────────────────────────────────
    # Path authoring
    # ──────────────────────────────────────────────────────────────────────────

    def add_point(self, x: float, y: float) -> None:
        """Canvas click: add a pending path point, or drop the armed bucket."""
        if self.mode == "running":
            return
        if self.bucket_placement_mode:
            ground_y = self._config().ground_y
            if y >= ground_y - self.BUCKET_SNAP:
                self.put_bucket(x)
                self.bucket_placement_mode = False
            return
        self.current_points.append(Point(float(x), float(y)))

    def set_draw_mode(self, mode) -> None:
        if self.mode == "running":
            return
        try:
            self.draw_mode = mode if isinstance(mode, SegmentType) else SegmentType(mode)
        except ValueError:
            self.status_msg = f"Unknown draw mode '{mode}'. Use line/curve."

    def complete_segment(self) -> bool:
        """Seal the pending points into a segment of the current draw mode."""
        if self.mode == "running" or len(self.current_points) < 2:
            return False
        self.path.append(PathSegment(self.draw_mode, tuple(self.current_points)))
        self.current_points = []
        self.pending_events.append({"type": "path_changed"})
        return True

    def clear_all(self) -> None:
        """Reset path, bucket, predictions and any run in progress."""
        self.path.clear()
        self.current_points.clear()
        self.bucket = None
        self.bucket_placement_mode = False
        self.predictions.clear()
        self._reset_run()
        self.status_msg = ""
        self.pending_events.append({"type": "clear"})

    def _reset_run(self) -> None:
        self.mode = "idle"
        self.state = None
        self.world = None
        self.final_energy = None
        self.prediction_results = []
        self.trail_positions.clear()

    # ──────────────────────────────────────────────────────────────────────────
    # Bucket
    # ──────────────────────────────────────────────────────────────────────────

    def place_bucket(self) -> None:
        """Arm bucket placement; the next ground-level click places it."""
        if self.mode == "running":
            return
        self.bucket_placement_mode = True
        if self.bucket is not None:
            self.bucket.is_hit = False
        self.status_msg = "Click on the ground to place bucket"

    def put_bucket(self, x: float) -> Bucket:
        """Place (or replace) the bucket centred on ``x``, standing on the ground."""
        self.bucket = Bucket(x=float(x), y=self._config().ground_y)
        self.pending_events.append({"type": "bucket_placed", "x": self.bucket.x})
        return self.bucket

    def remove_bucket(self) -> None:
        if self.mode == "running":
            return
        self.bucket = None
        self.bucket_placement_mode = False

    # ──────────────────────────────────────────────────────────────────────────
    # Launch settings / predictions
    # ──────────────────────────────────────────────────────────────────────────

    def set_friction(self, value: float) -> bool:
        """Friction multiplier per tick; must lie in (0, 1]."""
        value = float(value)
        if not 0.0 < value <= 1.0:
            self.status_msg = f"Friction must be in (0, 1], got {value}."
            return False
        self.friction = value
        return True

    def set_speed(self, speed: Optional[float] = None, *, vx: Optional[float] = None,
                  vy: Optional[float] = None, mode: Optional[str] = None) -> None:
        """Update launch speed; ``mode`` switches combined/separate control."""
        if mode is not None:
            if mode not in ("combined", "separate"):
                self.status_msg = f"Unknown speed mode '{mode}'."
                return
            self.speed_mode = mode
        if speed is not None:
            self.initial_speed = float(speed)
        if vx is not None:
            self.horizontal_speed = float(vx)
        if vy is not None:
            self.vertical_speed = float(vy)

        if self.speed_mode == "combined":
            self.horizontal_speed = self.initial_speed
            self.vertical_speed = 0.0
        else:
            self.initial_speed = (self.horizontal_speed ** 2 + self.vertical_speed ** 2) ** 0.5

    def launch_velocity(self) -> Velocity:
        if self.speed_mode == "separate":
            return Velocity(self.horizontal_speed, self.vertical_speed)
        return Velocity(self.initial_speed, 0.0)

    def set_prediction(self, metric, raw) -> None:
        """Store a raw guess; blank clears it. Parsed only when scoring."""
        try:
            key = metric if isinstance(metric, Metric) else Metric(metric)
        except ValueError:
            self.status_msg = f"Unknown metric '{metric}'."
            return
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            self.predictions.pop(key, None)
        else:
            self.predictions[key] = raw

    # ──────────────────────────────────────────────────────────────────────────
    # Run control
    # ──────────────────────────────────────────────────────────────────────────

    def _config(self) -> SimConfig:
        unknown = [k for k in self.options if k not in SimConfig.OPTIONS]
        if unknown:
            log.warning("[RUN] ignoring unknown options %s", unknown)
        return SimConfig.from_options(self.options)

    def start_run(self, config: Optional[SimConfig] = None) -> bool:
        """Validate and start a run. Returns False (no run) on an invalid path."""
        if self.mode == "running":
            return False
        self._reset_run()
        try:
            self.state, self.world = start_run(
                self.path, self.launch_velocity(), self.friction,
                bucket=self.bucket, config=config or self._config(),
            )
        except ValueError as exc:
            self.status_msg = f"Cannot start: {exc}."
            log.warning("[RUN] refused: %s", exc)
            return False

        self.mode = "running"
        self.status_msg = "Running..."
        start = self.state.ball.position
        self.pending_events.append({
            "type": "run_started",
            "x": start.x, "y": start.y,
            "initial_total": self.state.initial_total,
        })
        log.info("[RUN] started: %d segments, %d samples, v=%s, friction=%.2f",
                 len(self.path), len(self.world.sampled_path),
                 self.launch_velocity(), self.friction)
        return True

    def stop_run(self) -> None:
        """Cancel the active run; predictions are scored on the last snapshot."""
        if self.mode != "running":
            return
        self.mode = "finished"
        self._score(self.state)
        self.status_msg = f"Stopped after {self.state.ticks} ticks."
        self.pending_events.append({
            "type": "run_finished",
            "status": "STOPPED",
            "reason": "cancelled",
            "ticks": self.state.ticks,
        })
        log.info("[RUN] stopped by caller after %d ticks", self.state.ticks)

    def simulate(self, max_ticks: Optional[int] = None) -> dict:
        """Headless run to completion.

        Args:
            max_ticks: Overrides the configured tick ceiling for this run.

        Returns:
            ``dict`` with ``started`` (bool) and, when started, ``status``,
            ``ticks``, ``position``, ``final_energy``, ``bucket_hit`` and
            ``predictions`` (list of result dicts).
        """
        config = self._config()
        if max_ticks is not None:
            config = replace(config, max_ticks=max_ticks)
        if not self.start_run(config):
            return {"started": False, "error": self.status_msg}

        while self.mode == "running":
            self.step()

        st = self.state
        return {
            "started": True,
            "status": st.status.name,
            "reason": st.abort_reason,
            "ticks": st.ticks,
            "position": (st.ball.position.x, st.ball.position.y),
            "final_energy": self.final_energy,
            "bucket_hit": bool(self.bucket and self.bucket.is_hit),
            "predictions": [r.to_dict() for r in self.prediction_results],
        }

    # ──────────────────────────────────────────────────────────────────────────
    # JSON command panel
    # ──────────────────────────────────────────────────────────────────────────

    def get_state_json(self) -> str:
        """Return the authoring session as compact single-line JSON."""
        data = {
            "cmd": "path",
            "segments": [
                {"type": seg.type.value, "points": [[p.x, p.y] for p in seg.points]}
                for seg in self.path
            ],
            "bucket": None if self.bucket is None else {"x": self.bucket.x},
            "launch": {
                "mode": self.speed_mode,
                "speed": self.initial_speed,
                "vx": self.horizontal_speed,
                "vy": self.vertical_speed,
                "friction": self.friction,
            },
        }
        return json.dumps(data, separators=(',', ':'))

    def execute_command(self, text: str) -> None:
        """Parse a JSON command string and dispatch to handlers."""
        if not text:
            log.debug("[CMD] execute_command: empty text")
            return
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            log.info("[CMD] JSON parse error: %s", exc)
            self.status_msg = f"JSON error: {exc}"
            return
        if not isinstance(data, dict):
            self.status_msg = "Command must be a JSON object."
            return

        cmd = str(data.get("cmd", "")).lower().strip()
        log.debug("[CMD] cmd=%s", cmd)
        try:
            if cmd == "path":
                self._cmd_path(data)
            elif cmd == "bucket":
                self._cmd_bucket(data)
            elif cmd == "launch":
                self._cmd_launch(data)
            elif cmd == "predict":
                values = _expect(data.get("values", {}), dict, "values")
                for metric, raw in values.items():
                    self.set_prediction(metric, raw)
            elif cmd == "run":
                self.start_run()
            else:
                self.status_msg = f"Unknown cmd '{cmd}'. Use path/bucket/launch/predict/run."
        except (TypeError, ValueError, KeyError, IndexError) as exc:
            self.status_msg = f"{cmd}: bad arguments ({exc})"
            log.info("[CMD] %s failed: %s", cmd, exc)

    def _cmd_path(self, data: dict) -> None:
        """path: replace the authored path wholesale (and optionally the rest)."""
        if self.mode == "running":
            self.status_msg = "path: cannot edit while running."
            return
        segments = []
        for s in _expect(data.get("segments", []), list, "segments"):
            s = _expect(s, dict, "segment")
            points = _expect(s["points"], list, "points")
            segments.append(PathSegment(SegmentType(s.get("type", "line")),
                                        tuple(Point(float(p[0]), float(p[1])) for p in points)))
        self.path = segments
        self.current_points = []
        if "bucket" in data:
            self._cmd_bucket(data["bucket"] or {"remove": True})
        if "launch" in data:
            self._cmd_launch(data["launch"])
        self.status_msg = f"path: {len(segments)} segment(s) loaded."
        self.pending_events.append({"type": "path_changed"})

    def _cmd_bucket(self, data: dict) -> None:
        data = _expect(data, dict, "bucket")
        if data.get("remove"):
            self.remove_bucket()
        else:
            self.put_bucket(float(data["x"]))

    def _cmd_launch(self, data: dict) -> None:
        data = _expect(data, dict, "launch")
        if "friction" in data:
            self.set_friction(data["friction"])
        self.set_speed(data.get("speed"), vx=data.get("vx"), vy=data.get("vy"),
                       mode=data.get("mode"))


def _expect(value, kind: type, name: str):
    """Shape check for JSON command fields; raises TypeError on mismatch."""
    if not isinstance(value, kind):
        expected = "an object" if kind is dict else "a list"
        raise TypeError(f"{name} must be {expected}, got {type(value).__name__}")
    return value
