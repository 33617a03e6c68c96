# theme.py
from dataclasses import dataclass
from rich.theme import Theme
from rich.console import Console

@dataclass(frozen=True)
class AppTheme:
    # Colores semánticos
    info: str = "cyan"
    warn: str = "yellow"
    error: str = "bold red"
    invalid: str = "red"
    filename: str = "blue"
    success: str = "green"
    debug: str = "grey50"

    # Columnas de la fila de estado
    timestamp: str = "cyan"
    mode: str = "magenta"

    # Métricas de radio y tráfico
    rssi: str = "green1"
    rsrp: str = "gold1"
    rsrq: str = "cornflower_blue"
    sinr: str = "deep_pink4"
    rscp: str = "dark_orange3"
    ecio: str = "medium_purple"
    dl: str = "deep_sky_blue1"
    ul: str = "hot_pink"

    def metric_styles(self) -> dict:
        return {
            "rssi": self.rssi,
            "rsrp": self.rsrp,
            "rsrq": self.rsrq,
            "sinr": self.sinr,
            "rscp": self.rscp,
            "ecio": self.ecio,
            "dl":   self.dl,
            "ul":   self.ul,
        }

    def rich_theme(self) -> Theme:
        styles = {
            "info":      self.info,
            "warn":      self.warn,
            "error":     self.error,
            "invalid":   self.invalid,
            "filename":  self.filename,
            "success":   self.success,
            "debug":     self.debug,
            "timestamp": self.timestamp,
            "mode":      self.mode,
        }
        for key, color in self.metric_styles().items():
            styles[key] = color
            styles[f"{key}_mean"] = f"bold underline {color}"
        return Theme(styles)

APP_THEME = AppTheme()
console = Console(theme=APP_THEME.rich_theme())
