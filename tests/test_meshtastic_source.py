"""Tests for the Meshtastic location source."""

import time
from unittest.mock import Mock

import pytest

import geotrack.meshtastic_source as meshtastic_source
from geotrack.meshtastic_source import (
    MeshtasticLocationSource,
    fix_from_position,
    format_node_id,
)
from geotrack.models import ErrorKind, FixOptions, PermissionState, TrackerState
from geotrack.tracker import PositionTracker

NODE_NUM = 0x9E7878A4
NODE_ID = "!9e7878a4"


def position_packet(from_node=NODE_NUM, lat=37.5, lon=-122.5, **extra):
    position = {"latitudeI": int(lat * 1e7), "longitudeI": int(lon * 1e7)}
    position.update(extra)
    return {"from": from_node, "decoded": {"position": position}}


@pytest.fixture
def interface():
    """Create mock Meshtastic interface."""
    interface = Mock()
    interface.getMyNodeInfo.return_value = {"num": NODE_NUM}
    interface.nodes = {}
    return interface


@pytest.fixture
def source(interface, loop):
    """Create started location source."""
    source = MeshtasticLocationSource(port="/dev/null", loop=loop, interface=interface)
    source.start()
    yield source
    source.stop()


class Calls:
    def __init__(self):
        self.fixes = []
        self.errors = []

    def on_fix(self, fix):
        self.fixes.append(fix)

    def on_error(self, error):
        self.errors.append(error)


def test_format_node_id():
    """Test node id formatting."""
    assert format_node_id(NODE_NUM) == NODE_ID
    assert format_node_id("9e7878a4") == NODE_ID
    assert format_node_id(NODE_ID) == NODE_ID


def test_fix_from_position():
    """Test conversion of integer coordinates, time and accuracy."""
    fix = fix_from_position({
        "latitudeI": 377749000,
        "longitudeI": -1224194000,
        "time": 1700000000,
        "gpsAccuracy": 3000,
        "PDOP": 150,
    })

    assert fix.lat == pytest.approx(37.7749)
    assert fix.lng == pytest.approx(-122.4194)
    assert fix.timestamp == 1700000000000
    assert fix.accuracy == pytest.approx(4.5)


def test_fix_from_position_without_accuracy():
    """Test positions without accuracy or time."""
    fix = fix_from_position({"latitudeI": 10, "longitudeI": 20})
    assert fix.accuracy is None
    assert fix.timestamp is None
    assert fix_from_position({"latitudeI": 10}) is None


def test_requires_meshtastic(monkeypatch):
    """Test construction fails clearly without the meshtastic library."""
    monkeypatch.setattr(meshtastic_source, "MESHTASTIC_AVAILABLE", False)
    with pytest.raises(ImportError):
        MeshtasticLocationSource()


def test_start_uses_local_node(source):
    """Test the local node is tracked by default."""
    assert source.running
    assert source.node_id == NODE_ID
    assert not source.supports_permission_query


def test_fetch_waits_for_next_packet(source, loop):
    """Test one-shot fetch is answered by the next position packet."""
    calls = Calls()
    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions(timeout_ms=20000))
    assert calls.fixes == []

    source._on_receive_position(position_packet(), None)
    assert calls.fixes == []  # delivered on the loop, not the reader thread
    loop.advance()

    assert len(calls.fixes) == 1
    assert calls.fixes[0].lat == pytest.approx(37.5)

    loop.advance(30)
    assert calls.errors == []


def test_packets_from_other_nodes_are_ignored(source, loop):
    """Test only the tracked node's positions are used."""
    calls = Calls()
    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions())

    source._on_receive_position(position_packet(from_node=0x12345678), None)
    source._on_receive_position({"from": NODE_NUM, "decoded": {}}, None)
    loop.advance()

    assert calls.fixes == []


def test_fetch_timeout(source, loop):
    """Test fetch fails with a timeout when no packet arrives."""
    calls = Calls()
    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions(timeout_ms=20000))

    loop.advance(20)

    assert len(calls.errors) == 1
    assert calls.errors[0].kind is ErrorKind.TIMEOUT


def test_fetch_uses_fresh_cached_position(source, interface, loop):
    """Test the node database answers fetches that accept cached fixes."""
    interface.nodes = {NODE_ID: {"position": {
        "latitudeI": 375000000,
        "longitudeI": -1225000000,
        "time": int(time.time()),
    }}}
    calls = Calls()

    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions(max_cache_age_ms=60000))
    loop.advance()

    assert len(calls.fixes) == 1


def test_fetch_ignores_stale_cached_position(source, interface, loop):
    """Test old cached positions are not used."""
    interface.nodes = {NODE_ID: {"position": {
        "latitudeI": 375000000,
        "longitudeI": -1225000000,
        "time": int(time.time()) - 3600,
    }}}
    calls = Calls()

    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions(max_cache_age_ms=2000))
    loop.advance()

    assert calls.fixes == []


def test_watch_delivers_until_cleared(source, loop):
    """Test watches receive every packet until cleared."""
    calls = Calls()
    handle = source.watch_fix(calls.on_fix, calls.on_error, FixOptions())

    source._on_receive_position(position_packet(), None)
    source._on_receive_position(position_packet(lat=37.6), None)
    loop.advance()
    source.clear_watch(handle)
    source._on_receive_position(position_packet(lat=37.7), None)
    loop.advance()

    assert len(calls.fixes) == 2


def test_watch_timeout_keeps_watching(source, loop):
    """Test a silent radio reports timeouts but the watch stays open."""
    calls = Calls()
    source.watch_fix(calls.on_fix, calls.on_error, FixOptions(timeout_ms=15000))

    loop.advance(15)
    source._on_receive_position(position_packet(), None)
    loop.advance()

    assert [e.kind for e in calls.errors] == [ErrorKind.TIMEOUT]
    assert len(calls.fixes) == 1


def test_connection_lost(source, loop):
    """Test a lost link is reported to watches."""
    calls = Calls()
    source.watch_fix(calls.on_fix, calls.on_error, FixOptions())

    source._on_connection_lost(None)
    loop.advance()

    assert calls.errors[0].kind is ErrorKind.POSITION_UNAVAILABLE


def test_not_running_reports_unavailable(interface, loop):
    """Test requests on a stopped source fail."""
    source = MeshtasticLocationSource(loop=loop, interface=interface)
    calls = Calls()

    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions())
    loop.advance()

    assert calls.errors[0].kind is ErrorKind.POSITION_UNAVAILABLE


def test_stop_closes_interface(source, interface, loop):
    """Test stop drops requests and closes the radio."""
    calls = Calls()
    source.get_current_fix(calls.on_fix, calls.on_error, FixOptions(timeout_ms=1000))

    source.stop()
    loop.advance(5)

    interface.close.assert_called_once()
    assert source.interface is None
    assert not source.running
    assert calls.errors == []


def test_tracker_with_radio(source, loop):
    """Test the tracker acquires and averages positions from the radio."""
    estimates = []

    def on_estimate(estimate):
        estimates.append(estimate)

    tracker = PositionTracker(source, loop=loop)
    tracker.start(on_estimate=on_estimate)
    loop.advance(0.1)
    assert tracker.state is TrackerState.PROMPTING

    source._on_receive_position(position_packet(lat=37.50, gpsAccuracy=10000), None)
    loop.advance()
    source._on_receive_position(position_packet(lat=37.60, gpsAccuracy=10000), None)
    loop.advance()

    assert tracker.state is TrackerState.GRANTED
    assert tracker.permission_state is PermissionState.GRANTED
    assert tracker.watching
    assert len(estimates) == 2
    assert estimates[-1].lat == pytest.approx(37.55)
    assert estimates[-1].accuracy == pytest.approx(5.0)

    tracker.stop()
    assert source._watches == {}
