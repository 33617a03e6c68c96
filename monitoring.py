# monitoring.py
"""
Módulo de normalización.

Contiene la lógica para interpretar los campos crudos que entrega el
módem (etiquetas de modo, valores con sufijo de unidad, contadores)
y convertirlos en métricas numéricas según el perfil del fabricante.
"""

import math
import re
from typing import Any, Dict, List, Optional, Tuple

from config import MODE_METRICS
from models import DeviceProfile, Mode


# signo opcional, dígitos, decimales opcionales y unidad conocida opcional
_VALUE_RE = re.compile(r"^\s*([+-]?\d+(?:\.\d+)?)\s*(dBm|dB|%|mW|MHz|ms)?\s*$")

_CANONICAL_MODES = {m.value.upper(): m for m in Mode if m is not Mode.UNKNOWN}


class ParseFailure(ValueError):
    """Un campo no se pudo convertir a número."""


def strip_unit(raw: Any) -> float:
    """Convierte '-90dBm', ' 12.5 dB' o -90 en float.

    Args:
        raw: Valor crudo, texto o número.

    Returns:
        El valor numérico sin la unidad.

    Raises:
        ParseFailure: si no hay un número válido.
    """
    if isinstance(raw, bool) or raw is None:
        raise ParseFailure(f"Valor no numérico: {raw!r}")
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError:
            raise ParseFailure(f"Valor fuera de rango: {raw!r}")
    elif isinstance(raw, str):
        m = _VALUE_RE.match(raw)
        if not m:
            raise ParseFailure(f"Valor no numérico: {raw!r}")
        value = float(m.group(1))
    else:
        raise ParseFailure(f"Tipo no soportado: {type(raw).__name__}")

    # cadenas de cifras muy largas desbordan a inf
    if not math.isfinite(value):
        raise ParseFailure(f"Valor no finito: {raw!r}")
    return value


def normalize_mode(raw_tag: Any, profile: Optional[DeviceProfile] = None) -> Mode:
    """
    Traduce la etiqueta de modo del fabricante a Mode.
    Las etiquetas desconocidas devuelven Mode.UNKNOWN.
    """
    if raw_tag is None:
        return Mode.UNKNOWN
    tag = str(raw_tag).strip()
    if profile is not None and tag in profile.mode_tags:
        return profile.mode_tags[tag]
    return _CANONICAL_MODES.get(tag.upper(), Mode.UNKNOWN)


def mode_description(mode: Mode, carrier_aggregation: bool = False) -> str:
    """Texto legible del modo (GSM, WCDMA, LTE), con '-A' si hay agregación."""
    if mode is Mode.UNKNOWN:
        return "Unknown mode"
    return f"{mode.value}{'-A' if carrier_aggregation else ''}"


def extract_field(raw: Optional[Dict[str, Any]], path: str) -> Any:
    """
    Busca un campo en un mapa ya parseado.
    'wwan.signalStrength.rsrp' recorre diccionarios anidados.
    """
    if not isinstance(raw, dict):
        return None
    if path in raw:
        return raw[path]

    node: Any = raw
    for part in path.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def has_carrier_aggregation(raw: Optional[Dict[str, Any]], profile: DeviceProfile) -> bool:
    if not profile.ca_field:
        return False
    try:
        return strip_unit(extract_field(raw, profile.ca_field)) > 0
    except ParseFailure:
        return False


def select_signal_metrics(
    raw: Dict[str, Any],
    mode: Mode,
    profile: DeviceProfile
) -> Tuple[Dict[str, float], List[str]]:
    """
    Extrae las métricas de radio que corresponden al modo.

    Returns:
        (valores, fallos): los valores parseados y las claves que no
        se pudieron leer en este tick.
    """
    values: Dict[str, float] = {}
    failures: List[str] = []
    for key in MODE_METRICS[mode]:
        path = profile.signal_fields.get(key)
        if path is None:
            continue
        try:
            values[key] = strip_unit(extract_field(raw, path))
        except ParseFailure:
            failures.append(key)
    return values, failures


def read_traffic(raw: Dict[str, Any], profile: DeviceProfile) -> Tuple[float, float]:
    """Devuelve (descarga, subida) en bytes o bytes/s según el perfil."""
    dl_path, ul_path = profile.traffic_fields
    return strip_unit(extract_field(raw, dl_path)), strip_unit(extract_field(raw, ul_path))


def read_aux(raw: Dict[str, Any], profile: DeviceProfile) -> Dict[str, str]:
    """Campos auxiliares de solo texto (celda, batería, operador)."""
    texts: Dict[str, str] = {}
    for key, path in profile.aux_fields.items():
        value = extract_field(raw, path)
        if value is not None and value != "":
            texts[key] = str(value)
    return texts
