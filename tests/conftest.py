"""Shared test doubles: a manual event loop and a scriptable location source."""

import itertools

import pytest

from geotrack.location_source import LocationSource


class FakeTimer:
    """Handle returned by FakeLoop.call_later."""

    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Event loop double; time only moves when advance() is called."""

    def __init__(self):
        self.time = 0.0
        self.timers = []

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.time + delay, callback, args)
        self.timers.append(timer)
        return timer

    def call_soon(self, callback, *args):
        return self.call_later(0, callback, *args)

    call_soon_threadsafe = call_soon

    def advance(self, seconds=0.0):
        """Move time forward and run every timer that became due."""
        self.time += seconds
        while True:
            due = [t for t in self.timers if not t.cancelled and t.when <= self.time]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.timers.remove(timer)
            timer.callback(*timer.args)


class FakeLocationSource(LocationSource):
    """
    Location source whose results are delivered by the test.

    Requests are recorded; the test resolves them later with resolve_*,
    fail_*, emit* and change_permission.
    """

    def __init__(self, permission=None, notify_changes=False):
        self.supports_permission_query = permission is not None
        self.permission = permission
        self.notify_changes = notify_changes
        self.queries = []
        self.fetches = []
        self.watches = {}
        self.cleared = []
        self.permission_watches = {}
        self._handles = itertools.count(1)

    def query_permission(self, on_result, on_error):
        self.queries.append((on_result, on_error))

    def resolve_query(self, state=None):
        on_result, _ = self.queries.pop(0)
        on_result(state or self.permission)

    def fail_query(self, error):
        _, on_error = self.queries.pop(0)
        on_error(error)

    def watch_permission(self, callback):
        if not self.notify_changes:
            return None
        handle = next(self._handles)
        self.permission_watches[handle] = callback
        return handle

    def clear_permission_watch(self, handle):
        self.permission_watches.pop(handle, None)

    def change_permission(self, state):
        for callback in list(self.permission_watches.values()):
            callback(state)

    def get_current_fix(self, on_fix, on_error, options):
        self.fetches.append((on_fix, on_error, options))

    def resolve_fetch(self, fix):
        on_fix, _, _ = self.fetches.pop(0)
        on_fix(fix)

    def fail_fetch(self, error):
        _, on_error, _ = self.fetches.pop(0)
        on_error(error)

    def watch_fix(self, on_fix, on_error, options):
        handle = next(self._handles)
        self.watches[handle] = (on_fix, on_error, options)
        return handle

    def clear_watch(self, handle):
        self.watches.pop(handle)
        self.cleared.append(handle)

    def emit(self, fix):
        for on_fix, _, _ in list(self.watches.values()):
            on_fix(fix)

    def emit_error(self, error):
        for _, on_error, _ in list(self.watches.values()):
            on_error(error)


class Recorder:
    """Collects estimates and errors published by a tracker."""

    def __init__(self):
        self.estimates = []
        self.errors = []

    def on_estimate(self, estimate):
        self.estimates.append(estimate)

    def on_error(self, kind, message):
        self.errors.append((kind, message))


@pytest.fixture
def loop():
    """Create manual event loop."""
    return FakeLoop()


@pytest.fixture
def recorder():
    """Create event recorder."""
    return Recorder()
