# utils.py
from typing import Optional
from models import Sample
from config import (
    RATE_BPS, RATE_KBPS, RATE_MBPS, SIZE_KB, SIZE_MB,
    AUX_LABELS, MODE_METRICS, RENDER_SPECS,
)


def clamp(value: float, lo: float, hi: float) -> float:
    """Limita value al intervalo [lo, hi]."""
    return max(lo, min(hi, value))


def format_bandwidth(bytes_per_sec: float) -> str:
    """
    Formatea una tasa en bytes/s como bits/s con el sufijo adecuado.

    100 -> '800bit/s', 200 -> '1.56KBit/s', 200000 -> '1.53MBit/s'.
    """
    bits_per_sec = bytes_per_sec * 8

    if bits_per_sec < SIZE_KB:
        return f"{bits_per_sec:g}{RATE_BPS}"
    if bits_per_sec < SIZE_MB:
        return f"{bits_per_sec / SIZE_KB:.2f}{RATE_KBPS}"
    return f"{bits_per_sec / SIZE_MB:.2f}{RATE_MBPS}"


def format_metric(value: float, unit: str) -> str:
    """-90.0, 'dBm' -> '-90dBm'."""
    return f"{value:g}{unit}"


def format_stat(value: Optional[str], unit: str, color: str, width: int) -> str:
    """
    - value: texto ya formateado, o None.
    - unit: sufijo opcional (p.ej. ' dBm').
    - color: nombre de estilo Rich.
    - width: ancho fijo de caracteres del texto visible.
    """
    raw = "N/A" if value is None else value + unit
    padded = raw.ljust(width)
    return f"[{color}]{padded}[/{color}]"


def build_monitor_output(sample: Sample, mode_text: str) -> str:
    """
    Construye una línea de estado a partir de un Sample, con las métricas
    del modo actual alineadas.
    """
    W = 10

    ts = sample.timestamp.strftime("%H:%M:%S.%f")[:-3]
    parts = [
        f"[timestamp][{ts}][/timestamp]",
        f"[mode]{mode_text:<8}[/mode]",
    ]
    for key in MODE_METRICS[sample.mode]:
        label = RENDER_SPECS[key].label
        parts.append(f"{label}: {format_stat(sample.texts.get(key), '', key, W)}")

    parts.append(f"DL: {format_stat(sample.texts.get('dl'), '', 'dl', 13)}")
    parts.append(f"UL: {format_stat(sample.texts.get('ul'), '', 'ul', 13)}")

    # campos auxiliares, solo si el dispositivo los ha enviado
    for key, label in AUX_LABELS.items():
        text = sample.texts.get(key)
        if text:
            parts.append(f"{label}: [info]{text}[/info]")
    return " ".join(parts)


def write_log_line(log_file, device: str, sample: Sample) -> None:
    """
    Escribe una línea de datos en el archivo de log CSV a partir de un Sample.
    Columnas: hora,dispositivo,modo,rssi,rscp,ecio,rsrp,rsrq,sinr,dl,ul
    """
    ts = sample.timestamp.strftime("%H:%M:%S.%f")[:-3]
    cols = []
    for key in ('rssi', 'rscp', 'ecio', 'rsrp', 'rsrq', 'sinr'):
        value = sample.values.get(key)
        cols.append(f"{value:g}" if value is not None else "")

    if sample.rates is not None:
        dl_str, ul_str = f"{sample.rates[0]:.0f}", f"{sample.rates[1]:.0f}"
    else:
        dl_str = ul_str = ""

    line = (
        f"{ts},{device},{sample.mode.value},"
        f"{','.join(cols)},{dl_str},{ul_str}\n"
    )
    log_file.write(line)
    log_file.flush()
