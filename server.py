"""
Ball Path Simulator Web Server — Layer 3 (FastAPI + WebSocket)

Runs the tick loop as the external scheduler and streams ball position and
energy readings to browser clients over WebSocket.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from controller import SimulationController
import physics as _phys
from scenarios import ScenarioPreset

log = logging.getLogger(__name__)

# ── Controller ──────────────────────────────────────────────────────────────

ctrl = SimulationController()


# ── Lifespan (startup/shutdown) ─────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    task = asyncio.create_task(game_loop())
    yield
    task.cancel()


app = FastAPI(lifespan=lifespan)

# ── Client state ────────────────────────────────────────────────────────────

clients: list[WebSocket] = []

# Scenario map (keys 1-5)
SCENARIOS = {
    "1": (ScenarioPreset.scenario_1_vertical_drop, "1: Vertical drop"),
    "2": (ScenarioPreset.scenario_2_bucket_shot,   "2: Bucket shot"),
    "3": (ScenarioPreset.scenario_3_curved_ramp,   "3: Curved ramp"),
    "4": (ScenarioPreset.scenario_4_free_fall,     "4: Free fall"),
    "5": (ScenarioPreset.scenario_5_empty_path,    "5: Empty path"),
}

# ── Physics params (live-editable module constants) ─────────────────────────

PHYSICS_PARAMS = [
    ("GRAVITY",              "Gravity",      0.05,  2.0,   0.05),
    ("BALL_MASS",            "Ball Mass",    0.1,  10.0,   0.1),
    ("BALL_RADIUS",          "Ball Radius",  5.0,  40.0,   1.0),
    ("GROUND_Y",             "Ground Y",   300.0, 690.0,  10.0),
    ("TOLERANCE_PERCENTAGE", "Tolerance %",  1.0,  50.0,   1.0),
    ("BUCKET_WIDTH",         "Bucket W",    40.0, 200.0,   5.0),
    ("BUCKET_HEIGHT",        "Bucket H",    30.0, 150.0,   5.0),
]

PARAM_DEFAULTS = {attr: getattr(_phys, attr) for attr, *_ in PHYSICS_PARAMS}

# ── Async tick loop ─────────────────────────────────────────────────────────

TARGET_FPS = 60
FRAME_DT = 1.0 / TARGET_FPS


async def game_loop():
    """Main loop: one simulation tick per frame at ~60 fps."""
    while True:
        now = time.perf_counter()

        ctrl.step()

        if clients:
            frame_msg = _build_frame_message()
            dead: list[WebSocket] = []
            for ws in clients:
                try:
                    await ws.send_text(frame_msg)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                if ws in clients:
                    clients.remove(ws)

        # Sleep to maintain target FPS
        elapsed = time.perf_counter() - now
        sleep_time = FRAME_DT - elapsed
        if sleep_time > 0:
            await asyncio.sleep(sleep_time)
        else:
            await asyncio.sleep(0)


def _build_frame_message() -> str:
    """Serialize current state into a JSON frame message."""
    ball_data = None
    energy_data = None
    st = ctrl.state
    if st is not None:
        pos = st.ball.position
        ball_data = {
            "pos": [round(pos.x, 3), round(pos.y, 3)],
            "vel": [round(st.ball.velocity.vx, 4), round(st.ball.velocity.vy, 4)],
            "grounded": st.ball.grounded,
            "contact": st.contact.name,
            "tick": st.ticks,
        }
        e = st.energy
        energy_data = {
            "kinetic": round(e.kinetic, 4),
            "potential": round(e.potential, 4),
            "total": round(e.total, 4),
            "loss": round(e.loss, 4),
            "initial_total": round(st.initial_total, 4),
        }

    bucket_data = None
    if ctrl.bucket is not None:
        b = ctrl.bucket
        bucket_data = {"x": b.x, "y": b.y, "width": b.width, "height": b.height, "hit": b.is_hit}

    # Drain pending events
    events = list(ctrl.pending_events)
    ctrl.pending_events.clear()

    frame = {
        "type": "frame",
        "mode": ctrl.mode,
        "ball": ball_data,
        "energy": energy_data,
        "bucket": bucket_data,
        "events": events,
        "status": ctrl.status_msg,
        "info": ctrl.info_msg,
    }
    return json.dumps(frame, separators=(',', ':'))


# ── Command handlers ────────────────────────────────────────────────────────

def _get_params_data() -> list:
    """Return all physics params with current values."""
    result = []
    for attr, label, mn, mx, step in PHYSICS_PARAMS:
        result.append({
            "attr": attr, "label": label,
            "value": round(getattr(_phys, attr), 6),
            "min": mn, "max": mx, "step": step,
        })
    return result


def _load_scenario(key: str) -> None:
    fn, label = SCENARIOS[key]
    ctrl.clear_all()
    setup = fn(run=False)
    ctrl.path = setup["path"]
    ctrl.bucket = setup["bucket"]
    ctrl.set_friction(setup["friction"])
    v = setup["velocity"]
    ctrl.set_speed(vx=v.vx, vy=v.vy, mode="separate")
    ctrl.info_msg = f"Scenario {label}"
    ctrl.start_run()


def _handle_command(msg: dict):
    """Dispatch one client command. Returns a reply dict or None."""
    cmd = msg.get("cmd", "")
    if cmd == "add_point":
        ctrl.add_point(float(msg.get("x", 0.0)), float(msg.get("y", 0.0)))
    elif cmd == "complete_segment":
        ctrl.complete_segment()
    elif cmd == "draw_mode":
        ctrl.set_draw_mode(msg.get("mode", "line"))
    elif cmd == "place_bucket":
        ctrl.place_bucket()
    elif cmd == "remove_bucket":
        ctrl.remove_bucket()
    elif cmd == "friction":
        ctrl.set_friction(float(msg.get("value", ctrl.friction)))
    elif cmd == "speed":
        ctrl.set_speed(msg.get("speed"), vx=msg.get("vx"), vy=msg.get("vy"),
                       mode=msg.get("mode"))
    elif cmd == "predict":
        ctrl.set_prediction(msg.get("metric", ""), msg.get("value"))
    elif cmd == "run":
        ctrl.start_run()
    elif cmd == "stop":
        ctrl.stop_run()
    elif cmd == "clear":
        ctrl.clear_all()
    elif cmd == "scenario":
        key = str(msg.get("key", ""))
        if key in SCENARIOS and ctrl.mode != "running":
            _load_scenario(key)
    elif cmd == "execute":
        ctrl.execute_command(msg.get("text", ""))
    elif cmd == "get_state":
        return {"type": "state_json", "data": ctrl.get_state_json()}
    elif cmd == "get_params":
        return {"type": "params", "data": _get_params_data()}
    elif cmd == "adjust_param":
        idx = int(msg.get("index", 0))
        direction = int(msg.get("direction", 0))
        fine = msg.get("fine", False)
        if 0 <= idx < len(PHYSICS_PARAMS):
            attr, label, mn, mx, step = PHYSICS_PARAMS[idx]
            s = step / 10.0 if fine else step
            cur = getattr(_phys, attr)
            new_val = max(mn, min(mx, cur + direction * s))
            setattr(_phys, attr, new_val)
            return {"type": "param_update", "index": idx, "value": round(new_val, 6)}
    elif cmd == "reset_params":
        for attr, dflt in PARAM_DEFAULTS.items():
            setattr(_phys, attr, dflt)
        return {"type": "params", "data": _get_params_data()}
    else:
        log.debug("[WS] unknown cmd %r", cmd)
    return None


# ── WebSocket endpoint ──────────────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    clients.append(ws)
    log.info("[WS] client connected (%d total)", len(clients))

    # Send init message with physical constants
    await ws.send_text(json.dumps(_init_message()))

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(msg, dict):
                continue
            try:
                reply = _handle_command(msg)
            except (TypeError, ValueError, KeyError, AttributeError) as exc:
                log.info("[WS] bad command %r: %s", msg.get("cmd"), exc)
                continue
            if reply is not None:
                await ws.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        pass
    finally:
        if ws in clients:
            clients.remove(ws)
        log.info("[WS] client disconnected (%d left)", len(clients))


def _init_message() -> dict:
    return {
        "type": "init",
        "ball_radius": _phys.BALL_RADIUS,
        "ball_mass": _phys.BALL_MASS,
        "gravity": _phys.GRAVITY,
        "ground_y": _phys.GROUND_Y,
        "tolerance_percent": _phys.TOLERANCE_PERCENTAGE,
        "fps": TARGET_FPS,
    }


@app.get("/config")
async def config():
    return _init_message()


# ── Run with uvicorn ────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
