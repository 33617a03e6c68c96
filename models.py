# models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Mode(Enum):
    """Modo de red activo en el módem."""
    UNKNOWN = "Unknown"
    GSM = "GSM"
    WCDMA = "WCDMA"
    LTE = "LTE"


@dataclass(frozen=True)
class RenderSpec:
    key: str
    label: str
    unit: str
    min: float
    max: float
    capacity: int = 100
    dual: bool = False        # serie doble descarga/subida


@dataclass
class CounterState:
    value: float              # último valor acumulado visto
    time: float               # ms


@dataclass(frozen=True)
class Mark:
    x: float                  # centro de la barra
    base: float               # altura donde empieza el segmento
    height: float
    color: str


@dataclass
class Graph:
    key: str
    width: float
    height: float
    stroke_width: int
    marks: List[Mark] = field(default_factory=list)
    ceiling: Optional[float] = None   # Mbit/s, solo serie doble


@dataclass
class MetricReading:
    value: Optional[float]
    display_text: str


@dataclass
class TickResult:
    mode: Mode
    mode_text: str
    metrics: Dict[str, MetricReading] = field(default_factory=dict)
    graphs: Dict[str, Graph] = field(default_factory=dict)


@dataclass
class Sample:
    timestamp: datetime       # instante del tick
    elapsed: float            # segundos desde el inicio
    mode: Mode
    values: Dict[str, Optional[float]]
    texts: Dict[str, str]
    rates: Optional[Tuple[float, float]] = None   # bytes/s (descarga, subida)


@dataclass(frozen=True)
class DeviceProfile:
    """Rutas de los campos de un fabricante dentro de los mapas ya parseados."""
    name: str
    mode_field: str
    mode_tags: Dict[str, Mode]
    signal_fields: Dict[str, str]
    traffic_fields: Tuple[str, str]          # (descarga, subida)
    traffic_cumulative: bool                 # contadores acumulados o tasas directas
    aux_fields: Dict[str, str] = field(default_factory=dict)
    ca_field: Optional[str] = None           # nº de portadoras secundarias


@dataclass
class ModeChange:
    time: float               # segundos desde el inicio
    mode: Mode
    text: str
