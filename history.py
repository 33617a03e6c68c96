# history.py
"""
Históricos acotados por métrica y cálculo de tasas a partir de contadores.
"""

from collections import deque
from typing import Deque, Dict, List, Optional, Tuple, Union

from config import NEGATIVE_RATE_POLICIES
from models import CounterState, RenderSpec
from utils import clamp

Entry = Union[float, Tuple[float, float]]


class RollingHistory:
    """
    Un buffer por métrica, el más reciente primero.
    Al superar la capacidad se descarta el más antiguo.
    """

    def __init__(self, specs: Dict[str, RenderSpec]) -> None:
        self.specs = specs
        self._buffers: Dict[str, Deque[Entry]] = {
            key: deque(maxlen=spec.capacity) for key, spec in specs.items()
        }

    def push(self, key: str, value: float) -> float:
        """Limita value al rango de la métrica, lo inserta al frente y lo devuelve."""
        spec = self.specs[key]
        stored = clamp(value, spec.min, spec.max)
        self._buffers[key].appendleft(stored)
        return stored

    def push_pair(self, key: str, first: float, second: float) -> Tuple[float, float]:
        """Igual que push() para la serie doble (descarga, subida)."""
        spec = self.specs[key]
        pair = (clamp(first, spec.min, spec.max), clamp(second, spec.min, spec.max))
        self._buffers[key].appendleft(pair)
        return pair

    def clear(self, key: str) -> None:
        self._buffers[key].clear()

    def clear_all(self) -> None:
        for buf in self._buffers.values():
            buf.clear()

    def values(self, key: str) -> Tuple[Entry, ...]:
        return tuple(self._buffers[key])

    def latest(self, key: str) -> Optional[Entry]:
        buf = self._buffers[key]
        return buf[0] if buf else None

    def keys(self) -> List[str]:
        """Claves con al menos una muestra."""
        return [key for key, buf in self._buffers.items() if buf]

    def __len__(self) -> int:
        return sum(len(buf) for buf in self._buffers.values())


class RateEstimator:
    """Convierte contadores acumulados en tasas por segundo."""

    def __init__(self, negative_policy: str = "passthrough") -> None:
        if negative_policy not in NEGATIVE_RATE_POLICIES:
            raise ValueError(f"Política desconocida: {negative_policy}")
        self.negative_policy = negative_policy
        self._last: Dict[str, CounterState] = {}

    def estimate(self, counter_key: str, current_value: float, now_ms: float) -> Optional[float]:
        """
        Devuelve unidades/segundo, o None si todavía no hay tasa:
        primera observación o tiempo transcurrido no positivo.
        """
        previous = self._last.get(counter_key)
        if previous is None:
            self._last[counter_key] = CounterState(value=current_value, time=now_ms)
            return None

        delta_time = now_ms - previous.time
        if delta_time <= 0:
            return None

        rate = (current_value - previous.value) * 1000 / delta_time
        self._last[counter_key] = CounterState(value=current_value, time=now_ms)

        if rate < 0:
            if self.negative_policy == "clamp":
                return 0.0
            if self.negative_policy == "unavailable":
                return None
        return rate

    def state(self, counter_key: str) -> Optional[CounterState]:
        return self._last.get(counter_key)

    def reset(self) -> None:
        self._last.clear()
