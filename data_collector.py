# -*- coding: utf-8 -*-
"""
Módulo de recolección.

'SampleCoordinator' mantiene el estado de la monitorización (modo de red,
históricos, contadores) y convierte cada respuesta cruda en métricas y
gráficas. 'DataCollector' es el hilo que lo alimenta a intervalo fijo,
pidiendo los tres recursos del módem de forma concurrente.
"""

import json
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple

from rich.table import Table

from config import AUX_LABELS, BANDWIDTH_KEY, MonitorConfig, RENDER_SPECS, configure
from history import RateEstimator, RollingHistory
from models import Graph, MetricReading, Mode, ModeChange, Sample, TickResult
from monitoring import (
    ParseFailure, extract_field, has_carrier_aggregation, mode_description,
    normalize_mode, read_aux, read_traffic, select_signal_metrics,
)
from plotting import render_dual, render_single
from theme import console
from utils import build_monitor_output, format_bandwidth, format_metric, write_log_line


ENDPOINTS = ("signal", "traffic", "aux")


class FetchFailure(Exception):
    """Fallo de transporte al pedir un recurso al dispositivo."""

    def __init__(self, endpoint: str, message: str):
        super().__init__(f"{endpoint}: {message}")
        self.endpoint = endpoint


# -----------------------------------------------------------------------------
# Fuentes de telemetría
# -----------------------------------------------------------------------------

class TelemetrySource(ABC):
    """
    Origen de los mapas ya parseados. Cada método lanza FetchFailure
    si el recurso no está disponible.
    """

    def begin_tick(self) -> None:
        """Se llama una vez al inicio de cada tick, antes de las peticiones."""

    def is_exhausted(self) -> bool:
        return False

    @abstractmethod
    def fetch_signal(self) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def fetch_traffic(self) -> Dict[str, Any]:
        raise NotImplementedError

    def fetch_aux(self) -> Dict[str, Any]:
        raise FetchFailure("aux", "no soportado por esta fuente")


class ReplaySource(TelemetrySource):
    """
    Reproduce un fichero JSON-lines, una línea por tick:
    {"signal": {...}, "traffic": {...}, "aux": {...}}
    Un recurso ausente o null se comporta como una petición fallida.
    """

    def __init__(self, lines: Iterable[str], loop: bool = False):
        self._lines = [line for line in lines if line.strip()]
        self.loop = loop
        self._cursor = -1
        self._current: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str, loop: bool = False) -> "ReplaySource":
        with open(path, 'r', encoding='utf-8') as f:
            return cls(f.readlines(), loop=loop)

    def begin_tick(self) -> None:
        with self._lock:
            self._cursor += 1
            if self.loop and self._lines:
                self._cursor %= len(self._lines)
            if self._cursor >= len(self._lines):
                self._current = {}
                return
            try:
                doc = json.loads(self._lines[self._cursor])
            except json.JSONDecodeError as e:
                console.print(f"[error]Línea {self._cursor + 1} inválida: {e}[/error]")
                doc = {}
            self._current = doc if isinstance(doc, dict) else {}

    def is_exhausted(self) -> bool:
        return not self.loop and self._cursor >= len(self._lines) - 1

    def _get(self, endpoint: str) -> Dict[str, Any]:
        with self._lock:
            doc = self._current.get(endpoint)
        if not isinstance(doc, dict):
            raise FetchFailure(endpoint, "sin respuesta")
        return doc

    def fetch_signal(self) -> Dict[str, Any]:
        return self._get("signal")

    def fetch_traffic(self) -> Dict[str, Any]:
        return self._get("traffic")

    def fetch_aux(self) -> Dict[str, Any]:
        return self._get("aux")


# -----------------------------------------------------------------------------
# Coordinador
# -----------------------------------------------------------------------------

class SampleCoordinator:
    """
    Dueño de todo el estado mutable: modo actual, históricos, estado de
    los contadores y últimas lecturas. Ningún dato malformado provoca
    una excepción: la métrica afectada simplemente no se actualiza.
    """

    def __init__(self, config: Optional[MonitorConfig] = None):
        self.config = config or configure()
        self.profile = self.config.profile
        self.history = RollingHistory(self.config.ranges)
        self.rates = RateEstimator(self.config.negative_rate_policy)
        self.mode = Mode.UNKNOWN
        self.mode_text = mode_description(Mode.UNKNOWN)
        self.readings: Dict[str, MetricReading] = {}
        self.last_rates: Optional[Tuple[float, float]] = None
        self.mode_changes: List[ModeChange] = []
        self._start_ms: Optional[float] = None

    def _elapsed(self, now_ms: float) -> float:
        if self._start_ms is None:
            self._start_ms = now_ms
        return (now_ms - self._start_ms) / 1000

    def _set_mode(self, mode: Mode, now_ms: float) -> None:
        """Cambia de modo vaciando todos los históricos. No hace nada si no cambia."""
        if mode is self.mode:
            return
        self.mode = mode
        self.history.clear_all()
        self.last_rates = None
        self.readings = {k: r for k, r in self.readings.items() if k in AUX_LABELS}
        self.mode_changes.append(
            ModeChange(time=self._elapsed(now_ms), mode=mode, text=self.mode_text)
        )
        console.print(f"[warn]Modo de red -> {self.mode_text}[/warn]")

    def apply_signal(self, raw: Dict[str, Any], now_ms: float) -> List[str]:
        """Procesa la respuesta de señal. Devuelve las claves actualizadas."""
        self._elapsed(now_ms)
        mode = normalize_mode(extract_field(raw, self.profile.mode_field), self.profile)
        self.mode_text = mode_description(mode, has_carrier_aggregation(raw, self.profile))
        self._set_mode(mode, now_ms)

        values, failures = select_signal_metrics(raw, mode, self.profile)
        for key in failures:
            console.print(f"[debug]{key}: valor no disponible en este tick[/debug]")

        updated = []
        for key, value in values.items():
            self.history.push(key, value)
            unit = self.config.render_spec(key).unit
            self.readings[key] = MetricReading(value=value, display_text=format_metric(value, unit))
            updated.append(key)
        return updated

    def apply_traffic(self, raw: Dict[str, Any], now_ms: float) -> List[str]:
        """Procesa los contadores de tráfico. Devuelve las claves actualizadas."""
        self._elapsed(now_ms)
        try:
            dl, ul = read_traffic(raw, self.profile)
        except ParseFailure as e:
            console.print(f"[debug]Tráfico no disponible: {e}[/debug]")
            return []

        if self.profile.traffic_cumulative:
            dl_rate = self.rates.estimate("dl", dl, now_ms)
            ul_rate = self.rates.estimate("ul", ul, now_ms)
            if dl_rate is None or ul_rate is None:
                return []
        else:
            dl_rate, ul_rate = dl, ul

        self.history.push_pair(BANDWIDTH_KEY, dl_rate, ul_rate)
        self.last_rates = (dl_rate, ul_rate)
        self.readings["dl"] = MetricReading(value=dl_rate, display_text=format_bandwidth(dl_rate))
        self.readings["ul"] = MetricReading(value=ul_rate, display_text=format_bandwidth(ul_rate))
        return [BANDWIDTH_KEY]

    def apply_aux(self, raw: Dict[str, Any]) -> List[str]:
        """Campos auxiliares de solo texto; no tienen gráfica."""
        texts = read_aux(raw, self.profile)
        for key, text in texts.items():
            self.readings[key] = MetricReading(value=None, display_text=text)
        return []

    def render(self, key: str) -> Graph:
        spec = self.config.render_spec(key)
        values = self.history.values(key)
        if spec.dual:
            return render_dual(values, spec, self.config.stroke_width, self.config.graph_height)
        return render_single(values, spec, self.config.stroke_width, self.config.graph_height)

    def render_all(self) -> Dict[str, Graph]:
        """Gráficas de todas las métricas con histórico."""
        return {key: self.render(key) for key in self.history.keys()}

    def build_result(self, updated: Iterable[str]) -> TickResult:
        graphs = {
            key: self.render(key)
            for key in dict.fromkeys(updated)
            if self.history.latest(key) is not None
        }
        return TickResult(
            mode=self.mode,
            mode_text=self.mode_text,
            metrics=dict(self.readings),
            graphs=graphs,
        )

    def on_tick(
        self,
        raw_signal: Optional[Dict[str, Any]],
        raw_traffic: Optional[Dict[str, Any]],
        now_ms: float,
        raw_aux: Optional[Dict[str, Any]] = None,
    ) -> TickResult:
        """
        Procesa un tick completo. Un recurso a None equivale a una petición
        fallida: no se actualiza nada de ese recurso.
        """
        updated: List[str] = []
        if raw_signal is not None:
            updated += self.apply_signal(raw_signal, now_ms)
        if raw_traffic is not None:
            updated += self.apply_traffic(raw_traffic, now_ms)
        if raw_aux is not None:
            updated += self.apply_aux(raw_aux)
        return self.build_result(updated)

    def snapshot(self, timestamp: datetime, now_ms: float, updated: Iterable[str] = ()) -> Sample:
        """
        Muestra del tick. Solo las claves medidas en este tick llevan valor;
        los textos conservan la última lectura para la salida por consola.
        """
        fresh = set(updated)
        return Sample(
            timestamp=timestamp,
            elapsed=self._elapsed(now_ms),
            mode=self.mode,
            values={k: self.readings[k].value for k in fresh
                    if k in RENDER_SPECS and k in self.readings},
            texts={k: r.display_text for k, r in self.readings.items()},
            rates=self.last_rates if BANDWIDTH_KEY in fresh else None,
        )

    def reset(self) -> None:
        """Vuelve al estado inicial, como si la sesión acabara de empezar."""
        self.mode = Mode.UNKNOWN
        self.mode_text = mode_description(Mode.UNKNOWN)
        self.history.clear_all()
        self.rates.reset()
        self.readings.clear()
        self.last_rates = None
        self.mode_changes.clear()
        self._start_ms = None


# -----------------------------------------------------------------------------
# Hilo de muestreo
# -----------------------------------------------------------------------------

class DataCollector(threading.Thread):
    """
    Ejecuta un tick cada interval_ms. Las tres peticiones de un tick se
    lanzan en paralelo y cada respuesta se aplica bajo un único lock; el
    siguiente tick no empieza hasta que termina el anterior.
    """

    def __init__(
        self,
        source: TelemetrySource,
        config: Optional[MonitorConfig] = None,
        log_file: Optional[Any] = None,
        max_ticks: Optional[int] = None,
        clock: Callable[[], float] = lambda: time.time() * 1000,
        echo: bool = True,
    ):
        super().__init__(daemon=True)
        self.source = source
        self.config = config or configure()
        self.coordinator = SampleCoordinator(self.config)
        self.interval = self.config.interval_ms / 1000
        self.log_file = log_file
        self.max_ticks = max_ticks
        self.echo = echo
        self._clock = clock
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self.start_time = datetime.now()

        self.sample_queue: queue.Queue[Sample] = queue.Queue()
        self.samples: Deque[Sample] = deque(maxlen=self.config.history_capacity)
        self.graphs: Dict[str, Graph] = {}
        self.last_result: Optional[TickResult] = None
        self.ticks = 0
        self.failures: Dict[str, int] = {endpoint: 0 for endpoint in ENDPOINTS}
        self._sums: Dict[str, float] = {}
        self._counts: Dict[str, int] = {}

    def _apply(self, endpoint: str, raw: Dict[str, Any]) -> List[str]:
        now_ms = self._clock()
        with self._lock:
            if endpoint == "signal":
                return self.coordinator.apply_signal(raw, now_ms)
            if endpoint == "traffic":
                return self.coordinator.apply_traffic(raw, now_ms)
            return self.coordinator.apply_aux(raw)

    def tick(self, executor: ThreadPoolExecutor) -> TickResult:
        """Un ciclo completo: peticiones concurrentes, actualización y salida."""
        self.source.begin_tick()
        fetchers = {
            "signal": self.source.fetch_signal,
            "traffic": self.source.fetch_traffic,
            "aux": self.source.fetch_aux,
        }
        futures = {executor.submit(fn): endpoint for endpoint, fn in fetchers.items()}

        updated: List[str] = []
        for future in as_completed(futures):
            endpoint = futures[future]
            try:
                raw = future.result()
            except FetchFailure as e:
                self.failures[endpoint] += 1
                console.print(f"[warn]Error al pedir {endpoint}: {e}[/warn]")
                continue
            except Exception as e:
                self.failures[endpoint] += 1
                console.print(f"[error]Fallo inesperado en {endpoint}: {e}[/error]")
                continue
            updated += self._apply(endpoint, raw)

        with self._lock:
            result = self.coordinator.build_result(updated)
            self.graphs = self.coordinator.render_all()
            sample = self.coordinator.snapshot(datetime.now(), self._clock(), updated)

        self.ticks += 1
        self.last_result = result
        self._accumulate(sample)
        self._log_and_print(sample, result.mode_text)
        self.samples.append(sample)
        self.sample_queue.put(sample)
        return result

    def _accumulate(self, sample: Sample) -> None:
        # medias de la sesión sin guardar todas las muestras
        values = dict(sample.values)
        if sample.rates is not None:
            values["dl"], values["ul"] = sample.rates
        for key, value in values.items():
            if value is None:
                continue
            self._sums[key] = self._sums.get(key, 0.0) + value
            self._counts[key] = self._counts.get(key, 0) + 1

    def _log_and_print(self, sample: Sample, mode_text: str) -> None:
        if self.echo:
            console.print(build_monitor_output(sample, mode_text))
        if self.log_file:
            write_log_line(self.log_file, self.config.profile.name, sample)

    def run(self) -> None:
        with ThreadPoolExecutor(max_workers=len(ENDPOINTS)) as executor:
            while not self._stop_event.is_set():
                started = time.monotonic()
                self.tick(executor)
                if self.max_ticks is not None and self.ticks >= self.max_ticks:
                    break
                if self.source.is_exhausted():
                    console.print("[info]Fuente de telemetría agotada.[/info]")
                    break
                remaining = self.interval - (time.monotonic() - started)
                self._stop_event.wait(max(0.0, remaining))
        console.print("[warn]Hilo de recolección detenido.[/warn]")

    def start(self) -> None:
        """Inicia el hilo de muestreo."""
        console.print(
            f"\nMonitorización iniciada: perfil [info]'{self.config.profile.name}'[/info], "
            f"intervalo [info]{self.config.interval_ms} ms[/info]\n"
        )
        super().start()

    def stop(self) -> None:
        """Detiene el hilo y muestra el resumen."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=self.interval * 2 + 1)
        self.print_summary()

    def means(self) -> Dict[str, float]:
        return {key: self._sums[key] / self._counts[key] for key in self._sums}

    def print_summary(self) -> None:
        """Muestra un resumen con las medias de las métricas en una tabla."""
        means = self.means()
        if not means:
            console.print("[invalid]No hay datos para calcular medias.[/]")
            return

        table = Table(title="Resumen de la sesión")
        table.add_column("Métrica", style="bold")
        table.add_column("Media", justify="right")
        table.add_column("Unidad")
        for key, mean in means.items():
            if key in ("dl", "ul"):
                name = "Descarga" if key == "dl" else "Subida"
                table.add_row(name, f"[{key}_mean]{format_bandwidth(mean)}[/]", "")
            else:
                spec = RENDER_SPECS[key]
                table.add_row(spec.label, f"[{key}_mean]{mean:.2f}[/]", spec.unit)

        console.print(table)
        if self.coordinator.mode_changes:
            changes = ", ".join(f"{c.time:.1f}s -> {c.text}" for c in self.coordinator.mode_changes)
            console.print(f"[info]Cambios de modo:[/info] {changes}")
        failed = {k: v for k, v in self.failures.items() if v}
        if failed:
            console.print(f"[warn]Peticiones fallidas:[/warn] {failed}")
