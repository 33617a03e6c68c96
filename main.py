#!/usr/bin/env python3
# main.py
"""
Script principal para monitorizar la señal y el tráfico de un módem.

Reproduce la telemetría de una fuente (fichero JSON-lines con los mapas ya
parseados), mantiene los históricos por métrica y muestra una fila por tick.
Al terminar puede exportar las gráficas (PNG/SVG) y los datos (CSV).
"""

import os
from datetime import datetime
from typing import Optional
import typer
from config import ConfigError, MonitorConfig, configure, load_config
from data_collector import DataCollector, FetchFailure, ReplaySource, SampleCoordinator
from plotting import graph_to_svg, save_history_csv, save_plot_image
from theme import console

app = typer.Typer(add_completion=False)


def setup_logging(device: str, name: Optional[str]) -> Optional[object]:
    """Configura y abre el archivo de log."""
    base_dir = "logs"
    device_dir = os.path.join(base_dir, device)
    os.makedirs(device_dir, exist_ok=True)

    timestamp = datetime.now().strftime('%Y-%m-%d_%H-%M-%S')
    suffix = name or ""

    log_filename = os.path.join(device_dir, f"mon_{device}_{suffix}_{timestamp}.log")
    try:
        log_file = open(log_filename, 'w', encoding='utf-8')
        log_file.write("hora,dispositivo,modo,rssi,rscp,ecio,rsrp,rsrq,sinr,dl,ul\n")
        console.print(f"Guardando log en: [filename]{log_filename}[/filename]")
        return log_file
    except IOError as e:
        console.print(f"[error]Error al abrir el archivo de log: {e}[/error]")
        return None


def build_config(
    config_path: Optional[str],
    interval: Optional[int],
    profile: Optional[str],
) -> MonitorConfig:
    """Carga la configuración o termina con código 1 si es inválida."""
    try:
        if config_path:
            return load_config(config_path, interval_ms=interval, profile=profile)
        return configure(interval_ms=interval, profile=profile)
    except ConfigError as e:
        console.print(f"[error]{e}[/error]")
        raise typer.Exit(code=1)


def open_source(replay: str, loop: bool) -> ReplaySource:
    try:
        return ReplaySource.from_file(replay, loop=loop)
    except OSError as e:
        console.print(f"[error]No se pudo abrir {replay}: {e}[/error]")
        raise typer.Exit(code=1)


@app.command()
def run(
    replay: str = typer.Argument(
        ...,
        help='Fichero JSON-lines con la telemetría a reproducir.'
    ),
    interval: Optional[int] = typer.Option(
        None, '-i', '--interval',
        help='Intervalo entre ticks en ms (def: 2000).'
    ),
    profile: Optional[str] = typer.Option(
        None, '-p', '--profile',
        help='Perfil del dispositivo: huawei o netgear.'
    ),
    config_path: Optional[str] = typer.Option(
        None, '-c', '--config',
        help='Fichero JSON de configuración.'
    ),
    ticks: Optional[int] = typer.Option(
        None, '-t', '--ticks',
        help='Número máximo de ticks.'
    ),
    loop: bool = typer.Option(
        False, '--loop',
        help='Repetir la reproducción indefinidamente.'
    ),
    log: bool = typer.Option(
        False, '-l', '--log',
        help='Guardar la salida en un archivo de log.'
    ),
    save_png: bool = typer.Option(
        False, '--png',
        help='Guardar las gráficas finales en PNG.'
    ),
    save_csv: bool = typer.Option(
        False, '--csv',
        help='Guardar las últimas muestras en CSV.'
    ),
    name: str = typer.Option(
        None, '-n', '--name',
        help='Etiqueta a añadir antes del timestamp en los ficheros.'
    )
):
    """Monitoriza la telemetría en tiempo real."""
    cfg = build_config(config_path, interval, profile)
    source = open_source(replay, loop)
    device = cfg.profile.name

    log_file = setup_logging(device, name) if log else None
    collector = DataCollector(source, cfg, log_file=log_file, max_ticks=ticks)

    try:
        collector.start()
        while collector.is_alive():
            collector.join(timeout=0.5)
    except (KeyboardInterrupt, SystemExit):
        console.print("\n\n[error]Programa detenido por el usuario.[/error]")
    finally:
        collector.stop()

        if log_file:
            log_file.close()
            console.print("[success]Log cerrado.[/success]")

        labels = {key: spec.label for key, spec in cfg.ranges.items()}
        if save_png:
            save_plot_image(collector.graphs, labels, device, collector.start_time, name or "")
        if save_csv:
            save_history_csv(list(collector.samples), device, collector.start_time, name or "")

        console.print("\n[success]Script finalizado.[/success]")


@app.command()
def svg(
    replay: str = typer.Argument(
        ...,
        help='Fichero JSON-lines con la telemetría a reproducir.'
    ),
    output: str = typer.Option(
        "graficas_svg", '-o', '--output',
        help='Directorio de salida.'
    ),
    profile: Optional[str] = typer.Option(
        None, '-p', '--profile',
        help='Perfil del dispositivo: huawei o netgear.'
    ),
    config_path: Optional[str] = typer.Option(
        None, '-c', '--config',
        help='Fichero JSON de configuración.'
    ),
):
    """Reproduce todo el fichero sin esperas y guarda las gráficas finales en SVG."""
    cfg = build_config(config_path, None, profile)
    source = open_source(replay, loop=False)
    coordinator = SampleCoordinator(cfg)

    now_ms = 0
    while not source.is_exhausted():
        source.begin_tick()
        raw = {}
        for endpoint, fetch in (
            ("signal", source.fetch_signal),
            ("traffic", source.fetch_traffic),
            ("aux", source.fetch_aux),
        ):
            try:
                raw[endpoint] = fetch()
            except FetchFailure as e:
                console.print(f"[warn]Tick {now_ms // cfg.interval_ms}: {e}[/warn]")
                raw[endpoint] = None
        coordinator.on_tick(raw["signal"], raw["traffic"], now_ms, raw["aux"])
        now_ms += cfg.interval_ms

    graphs = coordinator.render_all()
    if not graphs:
        console.print("[error]No hay datos para generar gráficas.[/error]")
        raise typer.Exit(code=1)

    os.makedirs(output, exist_ok=True)
    for key, graph in graphs.items():
        filename = os.path.join(output, f"{key}.svg")
        with open(filename, 'w', encoding='utf-8') as f:
            f.write(graph_to_svg(graph))
        console.print(f"[success]Gráfica guardada en:[/] {os.path.abspath(filename)}")


if __name__ == "__main__":
    app()
