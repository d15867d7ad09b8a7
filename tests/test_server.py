"""
Server Tests — command dispatch, frame serialization and live params.
"""

import sys
import os
import json
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import physics as _phys
import server


@pytest.fixture(autouse=True)
def fresh_server():
    server.ctrl.clear_all()
    server.ctrl.pending_events.clear()
    yield server.ctrl
    for attr, dflt in server.PARAM_DEFAULTS.items():
        setattr(_phys, attr, dflt)
    server.ctrl.clear_all()


def frame():
    return json.loads(server._build_frame_message())


class TestCommands:

    def test_drawing_session(self, fresh_server):
        server._handle_command({"cmd": "draw_mode", "mode": "curve"})
        for x, y in [(10, 10), (60, 90), (120, 40)]:
            server._handle_command({"cmd": "add_point", "x": x, "y": y})
        server._handle_command({"cmd": "complete_segment"})
        assert len(fresh_server.path) == 1
        assert fresh_server.path[0].type.value == "curve"

    def test_bucket_by_click(self, fresh_server):
        server._handle_command({"cmd": "place_bucket"})
        server._handle_command({"cmd": "add_point", "x": 420, "y": 645})
        assert fresh_server.bucket.x == 420

    def test_get_state_round_trips_through_execute(self, fresh_server):
        fresh_server.execute_command(json.dumps({
            "cmd": "path",
            "segments": [{"type": "line", "points": [[0, 100], [200, 300]]}],
        }))
        reply = server._handle_command({"cmd": "get_state"})
        assert reply["type"] == "state_json"
        fresh_server.clear_all()
        server._handle_command({"cmd": "execute", "text": reply["data"]})
        assert len(fresh_server.path) == 1

    def test_unknown_cmd_ignored(self):
        assert server._handle_command({"cmd": "teleport"}) is None

    @pytest.mark.parametrize("text", [
        '{"cmd": "predict", "values": 3}',
        '{"cmd": "path", "segments": [[1, 2]]}',
        5,
    ])
    def test_malformed_execute_does_not_raise(self, fresh_server, text):
        assert server._handle_command({"cmd": "execute", "text": text}) is None
        assert fresh_server.status_msg

    def test_scenario_key_loads_and_starts(self, fresh_server):
        server._handle_command({"cmd": "scenario", "key": 2})
        assert fresh_server.mode == "running"
        assert fresh_server.bucket.x == 300
        assert fresh_server.info_msg == "Scenario 2: Bucket shot"

    def test_scenario_ignored_while_running(self, fresh_server):
        server._handle_command({"cmd": "scenario", "key": "4"})
        server._handle_command({"cmd": "scenario", "key": "2"})
        assert fresh_server.bucket is None

    def test_run_and_stop(self, fresh_server):
        server._handle_command({"cmd": "scenario", "key": "4"})
        for _ in range(5):
            fresh_server.step()
        server._handle_command({"cmd": "stop"})
        assert fresh_server.mode == "finished"
        assert fresh_server.state.ticks == 5


class TestFrames:

    def test_idle_frame(self):
        f = frame()
        assert f["type"] == "frame"
        assert f["mode"] == "idle"
        assert f["ball"] is None and f["energy"] is None

    def test_running_frame_and_event_drain(self, fresh_server):
        server._handle_command({"cmd": "scenario", "key": "4"})
        fresh_server.step()
        f = frame()
        assert f["ball"]["tick"] == 1
        assert f["ball"]["pos"] == [100.0, 50.3]
        assert f["energy"]["initial_total"] == 180.0
        assert f["energy"]["loss"] == pytest.approx(0.045)
        assert "run_started" in [e["type"] for e in f["events"]]
        assert frame()["events"] == []


class TestParams:

    def test_params_listing(self):
        reply = server._handle_command({"cmd": "get_params"})
        attrs = [p["attr"] for p in reply["data"]]
        assert attrs[0] == "GRAVITY"
        assert reply["data"][0]["value"] == 0.3

    def test_adjust_affects_next_run(self, fresh_server):
        reply = server._handle_command({"cmd": "adjust_param", "index": 0, "direction": 1})
        assert reply["value"] == pytest.approx(0.35)
        assert _phys.GRAVITY == pytest.approx(0.35)
        server._handle_command({"cmd": "scenario", "key": "4"})
        assert fresh_server.state.initial_total == pytest.approx(0.35 * 600)

    def test_adjust_clamps_to_range(self):
        for _ in range(100):
            server._handle_command({"cmd": "adjust_param", "index": 0, "direction": -1})
        assert _phys.GRAVITY == 0.05

    def test_reset_restores_defaults(self):
        server._handle_command({"cmd": "adjust_param", "index": 2, "direction": 1, "fine": True})
        assert _phys.BALL_RADIUS == pytest.approx(15.1)
        server._handle_command({"cmd": "reset_params"})
        assert _phys.BALL_RADIUS == 15.0

    def test_init_message(self):
        msg = server._init_message()
        assert msg["type"] == "init"
        assert msg["ground_y"] == 650.0
        assert msg["fps"] == server.TARGET_FPS

    def test_ground_edit_reanchors_placed_bucket(self, fresh_server):
        fresh_server.execute_command(json.dumps({
            "cmd": "path",
            "segments": [{"type": "line", "points": [[250, 400], [280, 650]]}],
            "bucket": {"x": 300},
        }))
        assert fresh_server.bucket.y == 650
        server._handle_command({"cmd": "adjust_param", "index": 3, "direction": -1})
        server._handle_command({"cmd": "run"})
        assert fresh_server.mode == "running"
        assert fresh_server.bucket.y == 640
