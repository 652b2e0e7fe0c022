import logging
from pathlib import Path

import matplotlib.pyplot as plt
from matplotlib.collections import PatchCollection
from matplotlib.patches import Rectangle

log = logging.getLogger(__name__)

STYLE_PATH = Path(__file__).resolve().parent / "hpfem.mplstyle"


def setup_style():
    """Apply shared matplotlib style."""
    if STYLE_PATH.exists():
        plt.style.use(STYLE_PATH)
    plt.rcParams.setdefault("savefig.bbox", "tight")


def save_figure(fig, filename: str | Path):
    """
    Save figure to the specified path.
    """
    filepath = Path(filename)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(filepath, bbox_inches="tight")
    log.info(f"Saved: {filepath}")
    return filepath


def plot_mesh(mesh, ax=None, show_ids: bool = False, cmap: str = "viridis"):
    """Draw the leaf elements of a mesh, coloured by tree depth."""
    if ax is None:
        _, ax = plt.subplots()

    patches, depths = [], []
    for elem in mesh.leaf_elems():
        (x0, x1), (y0, y1) = mesh.elem_bounds(elem.id)
        patches.append(Rectangle((x0, y0), x1 - x0, y1 - y0))
        depths.append(elem.depth)
        if show_ids:
            ax.text((x0 + x1) / 2, (y0 + y1) / 2, str(elem.id), ha="center", va="center", fontsize=7)

    collection = PatchCollection(patches, cmap=cmap, edgecolor="k", linewidth=0.5, alpha=0.6)
    collection.set_array(depths)
    ax.add_collection(collection)
    ax.autoscale_view()
    ax.set_aspect("equal")
    ax.set_xlabel("$x$")
    ax.set_ylabel("$y$")
    return ax


def plot_field(df, quantity: str, ax=None, cmap: str = "RdBu_r"):
    """Scatter a sampled field quantity (from ``UniformFieldSpace.to_dataframe``)."""
    if ax is None:
        _, ax = plt.subplots()
    sc = ax.scatter(df["x"], df["y"], c=df[quantity], cmap=cmap, s=4)
    ax.figure.colorbar(sc, ax=ax, label=quantity)
    ax.set_aspect("equal")
    return ax
