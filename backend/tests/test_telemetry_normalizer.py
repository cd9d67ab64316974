import datetime as dt

import pytest

from podbridge.core.exceptions import PayloadRejected
from podbridge.services.telemetry_service import FrameNormalizer, parse_payload


def test_latest_is_none_before_first_payload():
    n = FrameNormalizer()
    assert n.latest is None
    assert n.frame.timestamp is None
    assert n.frames_seen == 0


def test_voltage_group_replace_on_touch():
    n = FrameNormalizer()
    n.apply({"VB1": 12.1, "VB2": 47.5, "VB3": 24.0})
    frame = n.apply({"VB2": 48.0})
    # VB1/VB3 missing from a touched group fall back to 0
    assert frame.voltage.inverter == 48.0
    assert frame.voltage.lvs == 0.0
    assert frame.voltage.contacter == 0.0


def test_untouched_groups_are_preserved():
    n = FrameNormalizer()
    n.apply({"dsTemperature": 41.0, "mlxTemperature": 30.5})
    frame = n.apply({"VB1": 12.0})
    assert frame.temperature.motor == 41.0
    assert frame.temperature.battery == 30.5
    assert frame.voltage.lvs == 12.0


def test_same_payload_twice_is_idempotent():
    n = FrameNormalizer()
    payload = {"VB1": 12.0, "ambientTemp": 22.0, "lidarDistance": 1.5}
    first = n.apply(payload).model_dump(exclude={"timestamp"})
    second = n.apply(payload).model_dump(exclude={"timestamp"})
    assert first == second


def test_accel_magnitude():
    n = FrameNormalizer()
    frame = n.apply({"accel": [3.0, 4.0, 0.0]})
    assert frame.acceleration.x == 3.0
    assert frame.acceleration.magnitude == pytest.approx(5.0)


def test_short_arrays_are_ignored():
    n = FrameNormalizer()
    n.apply({"accel": [0.0, 0.0, 9.81], "orientation": [10.0, 20.0, 30.0]})
    frame = n.apply({"accel": [1.0, 2.0], "orientation": [], "calibration": [3]})
    assert frame.acceleration.z == 9.81
    assert frame.orientation.y == 20.0
    assert frame.calibration.gyro == 0


def test_calibration_mapping():
    frame = FrameNormalizer().apply({"calibration": [3, 2, 1]})
    assert (frame.calibration.gyro, frame.calibration.sys, frame.calibration.magneto) == (3, 2, 1)


def test_gap_height_feeds_rangefinder_distance():
    frame = FrameNormalizer().apply({"gap_height": 0.42, "lidarQuality": 80})
    assert frame.rangefinder.distance == 0.42
    assert frame.rangefinder.quality == 80.0


def test_bus_voltage_and_relay_states():
    n = FrameNormalizer()
    n.apply({"voltage": 51.2, "relayStates": {"A": True, "B": False, "C": False, "D": True}})
    frame = n.apply({"relayStates": {"B": True}})
    assert frame.bus_voltage == 51.2
    assert frame.relay_state is not None
    assert frame.relay_state.model_dump() == {"A": True, "B": True, "C": False, "D": True}


def test_timestamp_from_payload_or_receipt():
    n = FrameNormalizer()
    frame = n.apply({"VB1": 12.0, "timestamp": "2024-05-01T12:00:00Z"})
    assert frame.timestamp == dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)

    before = dt.datetime.now(dt.timezone.utc)
    frame = n.apply({"VB1": 12.0})
    assert frame.timestamp >= before


def test_history_is_bounded_fifo():
    n = FrameNormalizer(history_size=100)
    for i in range(105):
        n.apply({"VB1": float(i)})
    history = n.history()
    assert len(history) == 100
    assert history[0].voltage.lvs == 5.0
    assert history[-1].voltage.lvs == 104.0
    assert [f.voltage.lvs for f in n.history(limit=2)] == [103.0, 104.0]


def test_history_entries_are_snapshots():
    n = FrameNormalizer()
    n.apply({"VB1": 10.0})
    n.apply({"VB1": 11.0})
    assert [f.voltage.lvs for f in n.history()] == [10.0, 11.0]


def test_clear_history_keeps_live_frame():
    n = FrameNormalizer()
    n.apply({"VB1": 12.0})
    n.clear_history()
    assert n.history() == []
    assert n.latest is not None
    assert n.latest.voltage.lvs == 12.0


@pytest.mark.parametrize(
    "payload",
    [
        "not an object",
        [1, 2, 3],
        {"VB1": "twelve"},
        {"accel": "fast"},
        {"calibration": [4, 0, 0]},
    ],
)
def test_malformed_payload_is_rejected_without_mutation(payload):
    n = FrameNormalizer()
    n.apply({"VB1": 12.0, "calibration": [1, 1, 1]})
    before = n.frame.model_dump()

    with pytest.raises(PayloadRejected):
        n.apply(payload)

    assert n.frame.model_dump() == before
    assert n.frames_seen == 1
    assert len(n.history()) == 1


def test_unknown_keys_pass_structural_check():
    raw = parse_payload({"VB1": 12.0, "statusMessage": "armed"})
    assert raw.VB1 == 12.0
    assert raw.model_extra == {"statusMessage": "armed"}


@pytest.mark.parametrize("payload", [{"VB1": float("nan")}, {"accel": [0.0, float("inf"), 9.8]}])
def test_non_finite_values_are_rejected(payload):
    n = FrameNormalizer()
    with pytest.raises(PayloadRejected):
        n.apply(payload)
    assert n.latest is None
