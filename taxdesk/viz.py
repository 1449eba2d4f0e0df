"""
taxdesk.viz
===========

Minimal plotting helpers used by the CLI and the dashboard screenshots.

Outputs are PNGs written to the *images/* folder (created on first use).
Filenames can be overridden via keyword argument.
"""
from __future__ import annotations

import os
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import networkx as nx  # noqa: E402

from .lifecycle import INITIAL, TERMINAL, transition_graph  # noqa: E402
from .models import FilingStats, FilingStatus  # noqa: E402

# default output dir
_IMG_DIR = Path("images")


def _target(out_path: str | os.PathLike | None, default_name: str) -> Path:
    if out_path is None:
        _IMG_DIR.mkdir(exist_ok=True)
        return _IMG_DIR / default_name
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    return out_path


# ---------------------------------------------------------------------
# Plot 1 – bar chart of filing counts by status
# ---------------------------------------------------------------------
def status_summary(
    stats: FilingStats,
    out_path: str | os.PathLike | None = None,
    title: str = "Filing Status Snapshot",
) -> Path:
    """
    Generate a bar chart of how many filings are in each status.

    Parameters
    ----------
    stats : FilingStats
        Counts as returned by :meth:`FilingEngine.get_stats`.
    out_path : str or Path, default='images/status_snapshot.png'
        Where to save the PNG.

    Returns
    -------
    pathlib.Path
        Final image path for convenience.
    """
    labels = [s.value for s in FilingStatus]
    counts = [getattr(stats, s.value) for s in FilingStatus]

    plt.figure()
    bars = plt.bar(labels, counts, color="#2b9348", edgecolor="#333")
    # add counts on top of each bar
    for rect, cnt in zip(bars, counts):
        plt.text(rect.get_x() + rect.get_width() / 2,
                 cnt + 0.05,
                 str(cnt),
                 ha="center", va="bottom",
                 fontsize=8, color="#333")
    plt.grid(axis="y", linestyle=":", alpha=0.3)
    plt.title(f"{title} (total {stats.total})")
    plt.ylabel("Filing Count")
    plt.tight_layout()

    out_path = _target(out_path, "status_snapshot.png")
    plt.savefig(out_path, dpi=120, bbox_inches="tight")
    plt.close()
    return out_path


# ---------------------------------------------------------------------
# Plot 2 – the status state machine
# ---------------------------------------------------------------------
def lifecycle_diagram(out_path: str | os.PathLike | None = None) -> Path:
    """
    Draw the filing transition table as a directed graph.

    The initial status is drawn in blue, terminal statuses in red.
    """
    g = transition_graph()
    colors = [
        "#1d3557" if node == INITIAL.value
        else "#c1121f" if FilingStatus(node) in TERMINAL
        else "#8d99ae"
        for node in g.nodes
    ]

    plt.figure(figsize=(7, 6))
    pos = nx.circular_layout(g)
    nx.draw_networkx_nodes(g, pos, node_color=colors, node_size=2200)
    nx.draw_networkx_labels(g, pos, font_size=8, font_color="white")
    nx.draw_networkx_edges(g, pos, arrowstyle="->", arrowsize=15,
                           connectionstyle="arc3,rad=0.1", node_size=2200)

    plt.title("Filing Lifecycle")
    plt.axis("off")
    plt.tight_layout()

    out_path = _target(out_path, "filing_lifecycle.png")
    plt.savefig(out_path, dpi=120, bbox_inches="tight")
    plt.close()
    return out_path
