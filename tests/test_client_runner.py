import threading

from client.config import ClientConfig
from client.fetch import ProjectResult
from client.runner import PollRunner


class StubClient:
    def __init__(self, interval_s: float = 3600.0, on_sweep=None) -> None:
        self.config = ClientConfig(output_root=None, interval_s=interval_s)
        self.calls = 0
        self._on_sweep = on_sweep

    def run_once(self):
        self.calls += 1
        if self._on_sweep:
            self._on_sweep(self.calls)
        return [ProjectResult(project="site")]


class StubEvent:
    def __init__(self, stop_after: int) -> None:
        self.waits = []
        self._stop_after = stop_after
        self._stopped = False

    def is_set(self) -> bool:
        return self._stopped

    def wait(self, timeout):
        self.waits.append(timeout)
        if len(self.waits) >= self._stop_after:
            self._stopped = True
        return self._stopped

    def set(self) -> None:
        self._stopped = True

    def clear(self) -> None:
        self._stopped = False


def test_run_forever_sweeps_until_stopped():
    holder = {}

    def stop_on_third(calls):
        if calls == 3:
            holder["runner"].stop()

    client = StubClient(on_sweep=stop_on_third)
    runner = PollRunner(client, interval_s=0)
    holder["runner"] = runner

    runner.run_forever()

    assert client.calls == 3
    assert runner.sweeps == 3


def test_interval_is_measured_between_sweep_starts():
    ticks = iter([0.0, 40.0, 100.0, 250.0])
    client = StubClient()
    runner = PollRunner(client, interval_s=100, monotonic=lambda: next(ticks))
    event = StubEvent(stop_after=2)
    runner._stop_event = event

    runner.run_forever()

    assert client.calls == 2
    assert event.waits == [60.0, 0.0]


def test_first_sweep_runs_immediately_in_background():
    swept = threading.Event()
    client = StubClient(interval_s=3600, on_sweep=lambda _calls: swept.set())
    runner = PollRunner(client)

    runner.start()
    try:
        assert swept.wait(5)
        assert runner.is_running()
    finally:
        runner.stop()

    assert not runner.is_running()
    assert client.calls == 1


def test_interval_defaults_to_client_config():
    runner = PollRunner(StubClient(interval_s=86400))

    assert runner.interval_s == 86400.0
