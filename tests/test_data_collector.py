import itertools
import json
from datetime import datetime
from concurrent.futures import ThreadPoolExecutor

import pytest

from config import configure
from data_collector import DataCollector, FetchFailure, ReplaySource, SampleCoordinator, TelemetrySource
from models import Mode


def lte(rsrp=None, rsrq=None, sinr=None, rssi=None, ca=0):
    strength = {k: v for k, v in
                {"rsrp": rsrp, "rsrq": rsrq, "sinr": sinr, "rssi": rssi}.items()
                if v is not None}
    return {"wwan": {"currentNWserviceType": "LteService", "ca": {"SCCcount": ca},
                     "signalStrength": strength}}


def wcdma(rscp, ecio=-6):
    return {"wwan": {"currentNWserviceType": "WcdmaService",
                     "signalStrength": {"rscp": rscp, "ecio": ecio}}}


def traffic(dl, ul):
    return {"wwan": {"dataTransferredRx": dl, "dataTransferredTx": ul}}


def test_end_to_end_two_ticks() -> None:
    coordinator = SampleCoordinator()

    first = coordinator.on_tick({"wwan": {"currentNWserviceType": "LTE",
                                          "signalStrength": {"rsrp": "-90dBm"}}},
                                traffic(1000, 500), 0)
    assert first.mode is Mode.LTE
    assert coordinator.history.values("rsrp") == (-90,)
    assert "dl" not in first.metrics
    assert "bandwidth" not in first.graphs
    assert "rsrp" in first.graphs

    second = coordinator.on_tick(lte(rsrp="-85dBm"), traffic(3000, 1000), 2000)
    assert coordinator.history.values("rsrp") == (-85, -90)
    assert second.metrics["dl"].value == 1000
    assert second.metrics["ul"].value == 250
    assert second.metrics["dl"].display_text == "7.81KBit/s"
    assert second.metrics["rsrp"].display_text == "-85dBm"
    assert len(second.graphs["rsrp"].marks) == 2
    assert second.graphs["bandwidth"].ceiling == 1


def test_mode_switch_clears_every_history() -> None:
    coordinator = SampleCoordinator()
    coordinator.on_tick(wcdma(-85), traffic(0, 0), 0)
    coordinator.on_tick(wcdma(-80), traffic(1000, 1000), 1000)
    assert len(coordinator.history.values("rscp")) == 2
    assert coordinator.history.latest("bandwidth") is not None

    # LTE sin métricas: todo vacío justo tras la transición
    result = coordinator.on_tick(lte(), None, 2000)
    assert result.mode is Mode.LTE
    for key in coordinator.config.ranges:
        assert coordinator.history.values(key) == ()
    assert "rscp" not in result.metrics
    assert result.graphs == {}

    result = coordinator.on_tick(lte(rsrp=-95, rsrq=-10, sinr=12), traffic(2000, 1000), 3000)
    assert set(result.graphs) == {"rsrp", "rsrq", "sinr", "bandwidth"}
    assert "rscp" not in coordinator.render_all()
    assert [c.mode for c in coordinator.mode_changes] == [Mode.WCDMA, Mode.LTE]


def test_scope_keys_never_populated_outside_their_mode() -> None:
    coordinator = SampleCoordinator()
    raw = lte(rsrp=-90)
    raw["wwan"]["signalStrength"]["rscp"] = -80
    coordinator.on_tick(raw, None, 0)
    assert coordinator.history.values("rscp") == ()


def test_parse_failure_skips_only_that_metric() -> None:
    coordinator = SampleCoordinator()
    result = coordinator.on_tick(lte(rsrp=-90, rsrq="N/A", sinr="12dB"), None, 0)
    assert set(result.graphs) == {"rsrp", "sinr"}
    assert coordinator.history.values("rsrq") == ()


def test_failed_endpoint_keeps_stale_values() -> None:
    coordinator = SampleCoordinator()
    coordinator.on_tick(lte(rsrp=-90), None, 0)
    result = coordinator.on_tick(None, None, 2000)
    assert result.metrics["rsrp"].value == -90
    assert result.graphs == {}
    assert coordinator.history.values("rsrp") == (-90,)


def test_bad_traffic_payload_is_ignored() -> None:
    coordinator = SampleCoordinator()
    result = coordinator.on_tick(None, {"wwan": {"dataTransferredRx": "??"}}, 0)
    assert result.metrics == {}


def test_carrier_aggregation_text() -> None:
    coordinator = SampleCoordinator()
    assert coordinator.on_tick(lte(rsrp=-90, ca=1), None, 0).mode_text == "LTE-A"
    assert coordinator.on_tick(lte(rsrp=-90, ca=0), None, 1000).mode_text == "LTE"
    assert len(coordinator.mode_changes) == 1


def test_counter_reset_clamps_to_zero_by_default() -> None:
    coordinator = SampleCoordinator()
    coordinator.on_tick(None, traffic(5000, 5000), 0)
    result = coordinator.on_tick(None, traffic(100, 100), 1000)
    assert result.metrics["dl"].value == 0.0

    passthrough = SampleCoordinator(configure(negative_rate_policy="passthrough"))
    passthrough.on_tick(None, traffic(5000, 5000), 0)
    result = passthrough.on_tick(None, traffic(100, 100), 1000)
    assert result.metrics["dl"].value == -4900
    # la serie de la gráfica se mantiene en su rango
    assert passthrough.history.latest("bandwidth") == (0, 0)


def test_huawei_direct_rates_skip_estimator() -> None:
    coordinator = SampleCoordinator(configure(profile="huawei"))
    result = coordinator.on_tick(
        {"mode": "7", "rssi": "-67dBm", "rsrp": "-92dBm", "rsrq": "-11.0dB", "sinr": "9dB"},
        {"CurrentDownloadRate": "125000", "CurrentUploadRate": "25000"},
        0,
        {"cell_id": "1234567", "BatteryPercent": "90", "FullName": "MovilNet"},
    )
    assert result.metrics["dl"].value == 125000
    assert result.metrics["plmn"].display_text == "MovilNet"
    assert result.metrics["plmn"].value is None
    assert "bandwidth" in result.graphs


def test_overflowing_rate_is_not_displayed() -> None:
    coordinator = SampleCoordinator(configure(profile="huawei"))
    result = coordinator.on_tick(
        None, {"CurrentDownloadRate": "1" * 400, "CurrentUploadRate": "25000"}, 0,
    )
    assert "dl" not in result.metrics
    assert coordinator.render_all() == {}


def test_reset_returns_to_unknown() -> None:
    coordinator = SampleCoordinator()
    coordinator.on_tick(lte(rsrp=-90), traffic(0, 0), 0)
    coordinator.reset()
    assert coordinator.mode is Mode.UNKNOWN
    assert coordinator.readings == {}
    assert coordinator.render_all() == {}
    assert coordinator.mode_changes == []
    # los contadores también se olvidan y el reloj vuelve a empezar
    assert coordinator.on_tick(None, traffic(1000, 1000), 1000).metrics == {}
    coordinator.on_tick(lte(rsrp=-80), None, 5000)
    assert [c.time for c in coordinator.mode_changes] == [4.0]
    assert coordinator.snapshot(datetime.now(), 7000).elapsed == 6.0


def test_replay_source_and_failures() -> None:
    lines = [
        json.dumps({"signal": lte(rsrp=-90), "traffic": None}),
        "no es json",
        json.dumps({"signal": lte(rsrp=-80)}),
    ]
    source = ReplaySource(lines)
    assert not source.is_exhausted()

    source.begin_tick()
    assert source.fetch_signal()["wwan"]["currentNWserviceType"] == "LteService"
    with pytest.raises(FetchFailure):
        source.fetch_traffic()

    source.begin_tick()
    with pytest.raises(FetchFailure):
        source.fetch_signal()

    source.begin_tick()
    assert source.is_exhausted()
    with pytest.raises(FetchFailure):
        source.fetch_aux()


def test_replay_source_loops() -> None:
    source = ReplaySource([json.dumps({"signal": lte(rsrp=-90)})], loop=True)
    for _ in range(3):
        source.begin_tick()
        assert source.fetch_signal()
    assert not source.is_exhausted()


class FlakySignalSource(TelemetrySource):
    """Señal siempre caída; el tráfico responde con contadores crecientes."""

    def __init__(self):
        self.counter = 0

    def begin_tick(self) -> None:
        self.counter += 1

    def fetch_signal(self):
        raise FetchFailure("signal", "timeout")

    def fetch_traffic(self):
        return traffic(self.counter * 2000, self.counter * 500)


def test_collector_tick_isolates_failed_endpoint() -> None:
    clock = itertools.count(0, 1000)
    collector = DataCollector(FlakySignalSource(), configure(), clock=lambda: next(clock), echo=False)

    with ThreadPoolExecutor(max_workers=3) as executor:
        first = collector.tick(executor)
        second = collector.tick(executor)

    assert first.metrics == {}
    # tráfico en t=0 y t=2000 (la muestra intermedia consume un tick de reloj)
    assert second.metrics["dl"].value == 1000
    assert second.metrics["ul"].value == 250
    assert collector.failures == {"signal": 2, "traffic": 0, "aux": 2}
    assert collector.sample_queue.qsize() == 2
    assert "bandwidth" in collector.graphs
    assert collector.means()["dl"] == 1000


def test_collector_thread_runs_replay_until_exhausted() -> None:
    lines = [
        json.dumps({"signal": wcdma(-85), "traffic": traffic(0, 0)}),
        json.dumps({"signal": lte(rsrp=-90), "traffic": traffic(4000, 1000)}),
    ]
    collector = DataCollector(ReplaySource(lines), configure(interval_ms=10), echo=False)
    collector.start()
    collector.join(timeout=5)
    collector.stop()

    assert collector.ticks == 2
    assert collector.last_result.mode is Mode.LTE
    assert collector.coordinator.history.values("rscp") == ()
    assert len(collector.samples) == 2


def test_collector_stops_after_max_ticks() -> None:
    source = ReplaySource([json.dumps({"signal": lte(rsrp=-90)})], loop=True)
    collector = DataCollector(source, configure(interval_ms=10), max_ticks=3, echo=False)
    collector.start()
    collector.join(timeout=5)
    assert not collector.is_alive()
    assert collector.ticks == 3


class ScriptedSource(TelemetrySource):
    """Devuelve la señal de una lista; None equivale a una petición fallida."""

    def __init__(self, signals):
        self.signals = list(signals)
        self.tick = -1

    def begin_tick(self) -> None:
        self.tick += 1

    def fetch_signal(self):
        raw = self.signals[self.tick]
        if raw is None:
            raise FetchFailure("signal", "timeout")
        return raw

    def fetch_traffic(self):
        raise FetchFailure("traffic", "timeout")


def test_failed_ticks_do_not_count_as_measurements() -> None:
    source = ScriptedSource([lte(rsrp=-90), None, None, None, lte(rsrp=-60)])
    clock = itertools.count(0, 1000)
    collector = DataCollector(source, configure(), clock=lambda: next(clock), echo=False)

    with ThreadPoolExecutor(max_workers=3) as executor:
        for _ in range(5):
            collector.tick(executor)

    rsrp = [s.values.get("rsrp") for s in collector.samples]
    assert rsrp == [-90, None, None, None, -60]
    assert collector.means() == {"rsrp": -75}
    # la consola sigue mostrando la última lectura conocida
    assert collector.samples[2].texts["rsrp"] == "-90dBm"
    assert all(s.rates is None for s in collector.samples)


def test_snapshot_reports_rates_only_when_traffic_arrived() -> None:
    coordinator = SampleCoordinator()
    coordinator.on_tick(None, traffic(0, 0), 0)
    coordinator.on_tick(None, traffic(2000, 1000), 1000)

    fresh = coordinator.snapshot(datetime.now(), 1000, ["bandwidth"])
    stale = coordinator.snapshot(datetime.now(), 3000, [])
    assert fresh.rates == (2000, 1000)
    assert stale.rates is None
    assert stale.texts["dl"] == fresh.texts["dl"]
