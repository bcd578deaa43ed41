"""
scripts/setup_env.py
====================
Prepare the process for rendering the viridis vignette: global matplotlib
defaults, warning suppression, and the two output directories.

Every other script calls initialize() once before drawing anything, the way
an R Markdown document starts with a setup chunk.

─────────────────────────────────────────────────────────────────────────────
R → Python translation guide
─────────────────────────────────────────────────────────────────────────────
  R / knitr                               Python equivalent
  ──────────────────────────────────────  ─────────────────────────────────
  knitr::opts_chunk$set(warning=FALSE,    warnings.filterwarnings("ignore")
    message=FALSE)
  knitr::opts_chunk$set(fig.width=7,      RenderSettings(fig_width=7.0, ...)
    fig.height=5, dpi=96)
  knitr::opts_chunk$set(out.width="700px") RenderSettings.image_width_px
  dir.create(recursive=TRUE)              Path.mkdir(parents=True, exist_ok=True)
─────────────────────────────────────────────────────────────────────────────
"""

import warnings
from dataclasses import dataclass, field
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt

# ─────────────────────────────────────────────────────────────────────────────
# Paths
# ─────────────────────────────────────────────────────────────────────────────
# Relative on purpose: resolved against the working directory the vignette
# is rendered from, like knitr's output folders.
OUTPUT_DIR = Path("output")
IMAGES_DIR = Path("images")


class FilesystemError(OSError):
    """An output directory could not be created."""


# ─────────────────────────────────────────────────────────────────────────────
# Render settings
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RenderSettings:
    """
    Immutable bundle of rendering defaults handed to the renderer.

    fig_width / fig_height are in inches; dpi is the display pixel density
    used both by matplotlib and when stamping the saved PNG.  image_width_px
    is the fixed width every saved figure is resized to.
    """
    fig_width:      float = 7.0
    fig_height:     float = 5.0
    dpi:            int   = 96
    image_width_px: int   = 700
    theme:          str   = "bw"
    output_dir:     Path  = field(default=OUTPUT_DIR)
    images_dir:     Path  = field(default=IMAGES_DIR)


DEFAULT_SETTINGS = RenderSettings()


# ─────────────────────────────────────────────────────────────────────────────
# Directory setup
# ─────────────────────────────────────────────────────────────────────────────

def ensure_directories(*paths: Path) -> None:
    """
    Create each directory (and its parents) unless it already exists.

    exist_ok=True makes this idempotent, so a second run is a no-op.
    Anything else the OS refuses (permissions, a file squatting on the
    path) is fatal and surfaces as FilesystemError.
    """
    for path in paths:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create directory {path}: {e}") from e


# ─────────────────────────────────────────────────────────────────────────────
# Global matplotlib style
# ─────────────────────────────────────────────────────────────────────────────

def initialize(settings: RenderSettings = DEFAULT_SETTINGS) -> RenderSettings:
    """
    Apply process-wide rendering defaults and create the output folders.

    Returns the settings unchanged so callers can write
    ``settings = initialize()`` at the top of a pipeline.
    """
    # Non-interactive backend: render to files, no display server needed.
    # R equivalent: png(filename) before your plot commands.
    matplotlib.use("Agg")

    # Keep library chatter out of the rendered document.
    warnings.filterwarnings("ignore")

    plt.rcParams.update({
        "figure.figsize":    (settings.fig_width, settings.fig_height),
        "figure.dpi":        settings.dpi,
        "savefig.dpi":       settings.dpi,
        "font.family":       "sans-serif",
        "font.sans-serif":   ["Helvetica Neue", "Helvetica", "Arial",
                              "Liberation Sans", "DejaVu Sans"],
        "font.size":         10,
        "axes.titlesize":    11,
        "axes.labelsize":    10,
        "legend.fontsize":   9,
        "figure.facecolor":  "white",
    })

    ensure_directories(settings.output_dir, settings.images_dir)
    print(f"[init]  Output → {settings.output_dir}  |  images → {settings.images_dir}")
    return settings
