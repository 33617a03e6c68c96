import os
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from theme import console

try:
    import matplotlib
    matplotlib.use('Agg')
    import matplotlib.pyplot as plt
    from matplotlib.figure import Figure
    from matplotlib.axes import Axes
    plt.style.use('dark_background')
    MATPLOTLIB_AVAILABLE = True
except ImportError as e:
    console.print(f"[warn]Advertencia: no se pudo importar Matplotlib ({e}). La exportación PNG está desactivada.[/warn]")
    MATPLOTLIB_AVAILABLE = False

from config import GRAPH_HEIGHT, SIZE_MB, STROKE_WIDTH
from models import Graph, Mark, RenderSpec, Sample


NEUTRAL_COLOR = "gray"
DOWNLOAD_COLOR = "deepskyblue"
UPLOAD_COLOR = "deeppink"
BORDER_COLOR = "#ccc"

FIBONACCI_MAX_STEPS = 64


# -----------------------------------------------------------------------------
# Escalado y color
# -----------------------------------------------------------------------------

def fibonacci_ceiling(value: float, max_steps: int = FIBONACCI_MAX_STEPS) -> int:
    """
    Primer número de Fibonacci estrictamente mayor que value.
    0 -> 1, 1 -> 2, 4 -> 5, 5 -> 8, 12 -> 13.
    """
    f1, f2 = 0, 1
    fn = f2
    for _ in range(max_steps):
        fn = f1 + f2
        f1, f2 = f2, fn
        if fn > value:
            break
    return fn


def band_color(percent: float) -> str:
    """Rojo por debajo del 50%, naranja hasta el 85%, verde por encima."""
    if percent < 50:
        return "red"
    if percent < 85:
        return "orange"
    return "green"


def mark_x(index: int, width: float, stroke_width: int) -> float:
    """El índice 0 (la muestra más reciente) queda a la derecha."""
    return width - (index + 0.5) * (stroke_width + 1)


# -----------------------------------------------------------------------------
# Generación de marcas
# -----------------------------------------------------------------------------

def render_single(
    values: Sequence[float],
    spec: RenderSpec,
    stroke_width: int = STROKE_WIDTH,
    height: float = GRAPH_HEIGHT,
) -> Graph:
    """Una barra vertical por muestra, coloreada según su posición en el rango."""
    width = spec.capacity * (stroke_width + 1)
    graph = Graph(key=spec.key, width=width, height=height, stroke_width=stroke_width)
    span = spec.max - spec.min

    for i, value in enumerate(values):
        if span > 0:
            fraction = (value - spec.min) / span
        else:
            # rango degenerado: barra en la línea base
            fraction = 0.0
        graph.marks.append(Mark(
            x=mark_x(i, width, stroke_width),
            base=0.0,
            height=fraction * height,
            color=band_color(fraction * 100),
        ))
    return graph


def render_dual(
    pairs: Sequence[Tuple[float, float]],
    spec: RenderSpec,
    stroke_width: int = STROKE_WIDTH,
    height: float = GRAPH_HEIGHT,
) -> Graph:
    """
    Barras apiladas descarga/subida en Mbit/s.

    El menor de los dos valores forma el segmento neutro; el exceso del
    mayor se dibuja encima con el color del sentido dominante. El techo del
    eje Y es el siguiente número de Fibonacci sobre el máximo de la ventana.
    """
    width = spec.capacity * (stroke_width + 1)
    mbits = [(dl * 8 / SIZE_MB, ul * 8 / SIZE_MB) for dl, ul in pairs]
    peak = max((max(dl, ul) for dl, ul in mbits), default=0.0)
    ceiling = fibonacci_ceiling(peak)

    graph = Graph(
        key=spec.key, width=width, height=height,
        stroke_width=stroke_width, ceiling=float(ceiling)
    )
    scale = height / ceiling

    for i, (dl, ul) in enumerate(mbits):
        x = mark_x(i, width, stroke_width)
        low = min(dl, ul)
        excess = abs(dl - ul)
        graph.marks.append(Mark(x=x, base=0.0, height=low * scale, color=NEUTRAL_COLOR))
        if excess > 0:
            graph.marks.append(Mark(
                x=x,
                base=low * scale,
                height=excess * scale,
                color=DOWNLOAD_COLOR if dl > ul else UPLOAD_COLOR,
            ))
    return graph


def graph_to_svg(graph: Graph) -> str:
    """SVG en línea con una <line> por marca, con el eje Y hacia arriba."""
    gw, gh = graph.width, graph.height
    parts = [
        f'<svg version="1.1" viewBox="0 0 {gw:g} {gh:g}" width="{gw:g}" height="{gh:g}" '
        f'preserveAspectRatio="xMaxYMax slice" style="border:1px solid {BORDER_COLOR};padding:1px;">'
    ]
    for mark in graph.marks:
        y1 = gh - mark.base
        y2 = gh - mark.base - mark.height
        parts.append(
            f'<line x1="{mark.x:g}" y1="{y1:g}" x2="{mark.x:g}" y2="{y2:g}" '
            f'stroke="{mark.color}" stroke-width="{graph.stroke_width}"></line>'
        )
    parts.append("</svg>")
    return "".join(parts)


# -----------------------------------------------------------------------------
# Funciones de Exportación
# -----------------------------------------------------------------------------

def draw_graph(ax: "Axes", graph: Graph, title: str) -> None:
    """Dibuja las marcas de un Graph sobre un Axes de Matplotlib."""
    for mark in graph.marks:
        ax.vlines(
            mark.x, mark.base, mark.base + mark.height,
            colors=mark.color, linewidth=graph.stroke_width
        )
    ax.set_xlim(0, graph.width)
    ax.set_ylim(0, graph.height)
    ax.set_xticks([])
    ax.set_yticks([])
    if graph.ceiling is not None:
        title = f"{title} (máx. {graph.ceiling:g} Mbit/s)"
    ax.set_title(title, fontsize=10, color='white')
    for spine in ax.spines.values():
        spine.set_edgecolor(BORDER_COLOR)


def generate_final_plot(
    graphs: Dict[str, Graph],
    labels: Dict[str, str],
    title: str,
) -> Optional["Figure"]:
    """Genera una figura con una fila por gráfica."""
    if not MATPLOTLIB_AVAILABLE or not graphs:
        return None

    fig, axes = plt.subplots(len(graphs), 1, figsize=(8, 1.2 * len(graphs) + 0.6), squeeze=False)
    fig.suptitle(title, fontsize=12, color='white', weight='bold')
    for ax, (key, graph) in zip(axes[:, 0], graphs.items()):
        draw_graph(ax, graph, labels.get(key, key))
    fig.tight_layout()
    return fig


def save_plot_image(
    graphs: Dict[str, Graph],
    labels: Dict[str, str],
    device: str,
    start_time: datetime,
    name: str = "",
    base_dir: str = "graficas",
) -> Optional[str]:
    """Guarda las gráficas actuales como PNG. Devuelve la ruta o None."""
    fig = generate_final_plot(
        graphs, labels,
        f"Monitor {device} (Inicio: {start_time.strftime('%Y-%m-%d %H:%M:%S')})"
    )
    if not fig:
        console.print("[error]No hay datos para generar la imagen.[/error]")
        return None

    os.makedirs(base_dir, exist_ok=True)
    filename = os.path.join(
        base_dir,
        f"grafica_{device}_{name}_{start_time.strftime('%Y-%m-%d_%H-%M-%S')}.png"
    )
    try:
        fig.savefig(filename, facecolor='darkslategray', bbox_inches='tight', dpi=150)
        console.print(f"[success]Imagen guardada en:[/] {os.path.abspath(filename)}")
        return filename
    except OSError as e:
        console.print(f"[error]Error guardando imagen: {e}[/]")
        return None
    finally:
        plt.close(fig)


def samples_to_frame(samples: List[Sample]) -> pd.DataFrame:
    rows = [{
        'Timestamp': s.timestamp.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
        'Segundos': s.elapsed,
        'Modo': s.mode.value,
        'RSSI(dBm)': s.values.get('rssi'),
        'RSCP(dBm)': s.values.get('rscp'),
        'ECIO(dB)': s.values.get('ecio'),
        'RSRP(dBm)': s.values.get('rsrp'),
        'RSRQ(dB)': s.values.get('rsrq'),
        'SINR(dB)': s.values.get('sinr'),
        'Descarga(B/s)': s.rates[0] if s.rates else None,
        'Subida(B/s)': s.rates[1] if s.rates else None,
    } for s in samples]
    return pd.DataFrame(rows)


def save_history_csv(
    samples: List[Sample],
    device: str,
    start_time: datetime,
    name: str = "",
    base_dir: str = "datos_graficas",
) -> Optional[str]:
    """Guarda las muestras de la sesión en CSV con una fila final de medias."""
    if not samples:
        console.print("[warn]No hay muestras para guardar en CSV.[/warn]")
        return None

    df = samples_to_frame(samples)
    means = df.mean(numeric_only=True)
    mean_row = {col: means.get(col) for col in df.columns if col in means.index and col != 'Segundos'}
    mean_row['Timestamp'] = 'Media'
    df = pd.concat([df, pd.DataFrame([mean_row])], ignore_index=True)

    os.makedirs(base_dir, exist_ok=True)
    filename = os.path.join(
        base_dir,
        f"datos_{device}_{name}_{start_time.strftime('%Y-%m-%d_%H-%M-%S')}.csv"
    )
    try:
        with open(filename, 'w', newline='', encoding='utf-8') as f:
            f.write("#METADATA_START\n")
            f.write(f"#Device,{device}\n")
            f.write(f"#Start_Time,{start_time.strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write("#METADATA_END\n")
            df.to_csv(f, index=False)
        console.print(f"[success]CSV guardado en:[/] {os.path.abspath(filename)}")
        return filename
    except OSError as e:
        console.print(f"[error]Error guardando CSV: {e}[/]")
        return None
