# config.py
"""
Módulo de configuración.

Almacena constantes y configuraciones globales para la aplicación:
rangos de cada métrica, perfiles de fabricante y la configuración
de la monitorización (intervalo, capacidad del histórico).
"""

import json
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from models import DeviceProfile, Mode, RenderSpec


UPDATE_MS = 2000

HISTORY_CAPACITY = 100
STROKE_WIDTH = 3
GRAPH_HEIGHT = 30

SIZE_KB = 1024
SIZE_MB = 1024 * 1024

RATE_BPS = "bit/s"
RATE_KBPS = "KBit/s"
RATE_MBPS = "MBit/s"

NEGATIVE_RATE_POLICIES = ("passthrough", "clamp", "unavailable")

BANDWIDTH_KEY = "bandwidth"

# Métricas de radio activas en cada modo (rssi se muestra siempre)
MODE_METRICS: Dict[Mode, tuple] = {
    Mode.UNKNOWN: ("rssi",),
    Mode.GSM:     ("rssi",),
    Mode.WCDMA:   ("rssi", "rscp", "ecio"),
    Mode.LTE:     ("rssi", "rsrp", "rsrq", "sinr"),
}

RENDER_SPECS: Dict[str, RenderSpec] = {
    'rssi': RenderSpec(key='rssi', label="RSSI", unit="dBm", min=-113, max=-51),
    'rscp': RenderSpec(key='rscp', label="RSCP", unit="dBm", min=-100, max=-70),
    'ecio': RenderSpec(key='ecio', label="EC/IO", unit="dB", min=-10, max=-2),
    'rsrp': RenderSpec(key='rsrp', label="RSRP", unit="dBm", min=-130, max=-60),
    'rsrq': RenderSpec(key='rsrq', label="RSRQ", unit="dB", min=-16, max=-3),
    'sinr': RenderSpec(key='sinr', label="SINR", unit="dB", min=0, max=24),
    BANDWIDTH_KEY: RenderSpec(
        key=BANDWIDTH_KEY, label="Descarga/Subida", unit="B/s",
        min=0, max=float('inf'), dual=True
    ),
}

DEVICE_PROFILES: Dict[str, DeviceProfile] = {
    'huawei': DeviceProfile(
        name='huawei',
        mode_field='mode',
        mode_tags={"0": Mode.GSM, "2": Mode.WCDMA, "7": Mode.LTE},
        signal_fields={
            'rssi': 'rssi', 'rscp': 'rscp', 'ecio': 'ecio',
            'rsrp': 'rsrp', 'rsrq': 'rsrq', 'sinr': 'sinr',
        },
        traffic_fields=('CurrentDownloadRate', 'CurrentUploadRate'),
        traffic_cumulative=False,
        aux_fields={'cell_id': 'cell_id', 'battery': 'BatteryPercent', 'plmn': 'FullName'},
    ),
    'netgear': DeviceProfile(
        name='netgear',
        mode_field='wwan.currentNWserviceType',
        mode_tags={"WcdmaService": Mode.WCDMA, "LteService": Mode.LTE},
        signal_fields={
            'rssi': 'wwan.signalStrength.rssi',
            'rscp': 'wwan.signalStrength.rscp',
            'ecio': 'wwan.signalStrength.ecio',
            'rsrp': 'wwan.signalStrength.rsrp',
            'rsrq': 'wwan.signalStrength.rsrq',
            'sinr': 'wwan.signalStrength.sinr',
        },
        traffic_fields=('wwan.dataTransferredRx', 'wwan.dataTransferredTx'),
        traffic_cumulative=True,
        aux_fields={
            'cell_id': 'wwanadv.cellId',
            'battery': 'power.battChargeLevel',
            'plmn': 'wwan.registerNetworkDisplay',
        },
        ca_field='wwan.ca.SCCcount',
    ),
}

AUX_LABELS: Dict[str, str] = {
    'cell_id': "Celda",
    'battery': "Batería",
    'plmn': "Operador",
}


class ConfigError(ValueError):
    """Configuración inválida detectada al arrancar."""


@dataclass
class MonitorConfig:
    interval_ms: int = UPDATE_MS
    history_capacity: int = HISTORY_CAPACITY
    stroke_width: int = STROKE_WIDTH
    graph_height: int = GRAPH_HEIGHT
    profile: DeviceProfile = field(default_factory=lambda: DEVICE_PROFILES['netgear'])
    negative_rate_policy: str = "clamp"
    ranges: Dict[str, RenderSpec] = field(default_factory=lambda: dict(RENDER_SPECS))

    @property
    def graph_width(self) -> int:
        return self.history_capacity * (self.stroke_width + 1)

    def render_spec(self, key: str) -> RenderSpec:
        return self.ranges[key]


def _positive_int(value: Any, what: str) -> int:
    """Convierte a int y comprueba que sea positivo después de truncar."""
    if isinstance(value, bool):
        raise ConfigError(f"{what} debe ser un número: {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ConfigError(f"{what} debe ser un número: {value!r}") from e
    if number <= 0:
        raise ConfigError(f"{what} debe ser positivo: {value!r}")
    return number


def configure(
    interval_ms: Optional[int] = None,
    ranges: Optional[Dict[str, Dict[str, float]]] = None,
    history_capacity: Optional[int] = None,
    stroke_width: Optional[int] = None,
    graph_height: Optional[int] = None,
    profile: Optional[str] = None,
    negative_rate_policy: Optional[str] = None,
) -> MonitorConfig:
    """
    Construye una MonitorConfig validada.

    - ranges: {clave: {"min": ..., "max": ...}} sobrescribe los rangos por defecto.
    - history_capacity se aplica a todas las métricas.
    Lanza ConfigError si algún valor no es válido.
    """
    cfg = MonitorConfig()

    if interval_ms is not None:
        cfg.interval_ms = _positive_int(interval_ms, "El intervalo")

    if history_capacity is not None:
        cfg.history_capacity = _positive_int(history_capacity, "La capacidad del histórico")

    if stroke_width is not None:
        cfg.stroke_width = _positive_int(stroke_width, "El grosor de barra")

    if graph_height is not None:
        cfg.graph_height = _positive_int(graph_height, "La altura de la gráfica")

    if profile is not None:
        if not isinstance(profile, str) or profile not in DEVICE_PROFILES:
            raise ConfigError(f"Perfil de dispositivo desconocido: {profile}")
        cfg.profile = DEVICE_PROFILES[profile]

    if negative_rate_policy is not None:
        if not isinstance(negative_rate_policy, str) or negative_rate_policy not in NEGATIVE_RATE_POLICIES:
            raise ConfigError(f"Política de tasa negativa desconocida: {negative_rate_policy}")
        cfg.negative_rate_policy = negative_rate_policy

    specs: Dict[str, RenderSpec] = {}
    for key, spec in RENDER_SPECS.items():
        specs[key] = replace(spec, capacity=cfg.history_capacity)

    if ranges is not None and not isinstance(ranges, dict):
        raise ConfigError("Los rangos deben ser un objeto {métrica: {min, max}}")
    for key, bounds in (ranges or {}).items():
        if key not in specs:
            raise ConfigError(f"Métrica desconocida en los rangos: {key}")
        if not isinstance(bounds, dict):
            raise ConfigError(f"El rango de {key} debe ser un objeto con min/max")
        try:
            lo = float(bounds.get('min', specs[key].min))
            hi = float(bounds.get('max', specs[key].max))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Rango no numérico para {key}: {bounds}") from e
        if math.isnan(lo) or math.isnan(hi) or lo > hi:
            raise ConfigError(f"Rango inválido para {key}: min={lo}, max={hi}")
        specs[key] = replace(specs[key], min=lo, max=hi)

    cfg.ranges = specs
    return cfg


def load_config(path: str, **overrides: Any) -> MonitorConfig:
    """
    Lee un fichero JSON con las mismas claves que configure().
    Los overrides que no sean None tienen prioridad sobre el fichero.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"No se pudo leer la configuración {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"La configuración {path} debe ser un objeto JSON")

    allowed = {
        'interval_ms', 'ranges', 'history_capacity', 'stroke_width',
        'graph_height', 'profile', 'negative_rate_policy',
    }
    unknown = set(data) - allowed
    if unknown:
        raise ConfigError(f"Claves desconocidas en {path}: {', '.join(sorted(unknown))}")
    data.update({k: v for k, v in overrides.items() if v is not None})
    return configure(**data)
