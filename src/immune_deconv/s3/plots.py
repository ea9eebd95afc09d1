#!/usr/bin/env python3
"""
S3 (analysis) — Figures
plot_composition, plot_heatmap, plot_group_boxes, make_default_panel
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

# Headless-safe plotting
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns

logger = logging.getLogger(__name__)


def _short(label: str, n: int = 20) -> str:
    return label[:n] + "..." if len(label) > n else label


def plot_composition(fractions: pd.DataFrame, out_path: Path) -> str:
    """Stacked bar of cell-type fractions per sample."""
    if fractions is None or fractions.empty:
        return ""
    fig, ax = plt.subplots(figsize=(max(8, 0.4 * fractions.shape[1] + 4), 7))
    colors = sns.color_palette("husl", fractions.shape[0])
    fractions.T.plot(kind="bar", stacked=True, ax=ax, color=colors, width=0.85)
    ax.set_xlabel("Samples"); ax.set_ylabel("Estimated fraction")
    ax.set_title("Immune Cell Composition per Sample", fontweight="bold")
    ax.legend(bbox_to_anchor=(1.02, 1), loc="upper left", fontsize=8, title="Cell type")
    plt.xticks(rotation=45, ha="right")
    plt.tight_layout()
    plt.savefig(out_path, dpi=300, bbox_inches="tight"); plt.close(fig)
    return str(out_path)


def plot_heatmap(fractions: pd.DataFrame, out_path: Path) -> str:
    if fractions is None or fractions.empty:
        return ""
    plt.figure(figsize=(12, 8))
    sns.heatmap(
        fractions,
        annot=fractions.size <= 400,
        fmt=".2f",
        cmap="viridis",
        mask=fractions.isnull(),
        cbar_kws={"label": "Cell Type Fraction"},
        annot_kws={"size": 6},
    )
    plt.title("Cell Type Fractions Across Samples", fontweight="bold", fontsize=12)
    plt.xlabel("Samples", fontsize=10)
    plt.ylabel("Cell Types", fontsize=10)
    plt.xticks(rotation=45, ha="right")
    plt.yticks(fontsize=8)
    plt.tight_layout()
    plt.savefig(out_path, dpi=300, bbox_inches="tight")
    plt.close()
    return str(out_path)


def plot_group_boxes(long: pd.DataFrame, out_path: Path, group_col: str = "tumor_group") -> str:
    """Fractions per cell type, split by tumor-count group (box + points)."""
    if long is None or long.empty or group_col not in long.columns:
        return ""
    order = sorted(long[group_col].astype(str).unique(), key=lambda g: (len(g), g))
    data = long.assign(**{group_col: long[group_col].astype(str)})
    fig, ax = plt.subplots(figsize=(16, 8))
    sns.boxplot(data=data, x="cell_type", y="fraction", hue=group_col, hue_order=order,
                ax=ax, showfliers=False)
    sns.stripplot(data=data, x="cell_type", y="fraction", hue=group_col, hue_order=order,
                  ax=ax, dodge=True, color="black", size=3, alpha=0.6, legend=False)
    ax.set_xlabel("Cell Types"); ax.set_ylabel("Fraction")
    ax.set_title("Cell Type Fractions by Number of Tumors per Patient", fontweight="bold")
    cell_types = [str(c) for c in pd.unique(data["cell_type"])]
    ax.set_xticks(range(len(cell_types)))
    ax.set_xticklabels([_short(c, 15) for c in cell_types], rotation=45, ha="right")
    ax.legend(title="Tumors per patient"); ax.grid(axis="y", alpha=0.3)
    plt.tight_layout()
    plt.savefig(out_path, dpi=300, bbox_inches="tight"); plt.close(fig)
    return str(out_path)


def make_default_panel(
    fractions: pd.DataFrame,
    long: pd.DataFrame,
    plots_dir: Path,
    group_col: str = "tumor_group",
) -> Dict[str, str]:
    """Render all figures into `plots_dir`; returns {name: path} for those written."""
    plots_dir = Path(plots_dir)
    plots_dir.mkdir(parents=True, exist_ok=True)
    files: Dict[str, Optional[str]] = {
        "composition": plot_composition(fractions, plots_dir / "composition_stacked_bar.png"),
        "heatmap": plot_heatmap(fractions, plots_dir / "fraction_heatmap.png"),
        "group_boxes": plot_group_boxes(long, plots_dir / "fractions_by_tumor_group.png", group_col=group_col),
    }
    written = {k: v for k, v in files.items() if v}
    logger.info("[S3] Wrote %d figure(s) to %s", len(written), plots_dir)
    return written
