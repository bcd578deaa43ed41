"""
scripts/visualize.py
====================
Turn a dataset plus a resolved palette into a finished matplotlib figure.

A chart is described first (ChartSpec: data, geometry, colour mapping,
labels, theme) and drawn second, so the same spec can be rendered alone
or as one panel of a side-by-side comparison grid.

Geometries:
    point    scatter of x / y coloured by a third column
    bar      one bar per category, height = row count
    hex      hexagonal binning of x / y, fill = count
    contour  filled contours of a long-form x / y / z grid
    polygon  choropleth of a GeoDataFrame

─────────────────────────────────────────────────────────────────────────────
Key R → matplotlib translation notes
─────────────────────────────────────────────────────────────────────────────
  R / ggplot2                       matplotlib equivalent
  ──────────────────────────────    ──────────────────────────────────────────
  ggplot(df, aes(x, y, colour=z))   build_chart(df, "point", mapping, color="z")
  geom_point()                      ax.scatter(x, y, color=rgba)
  geom_bar(aes(fill = cat))         ax.bar(levels, counts, color=[...])
  geom_hex()                        ax.hexbin(x, y, gridsize=...)
  filled.contour(z)                 ax.contourf(X, Y, Z, levels=...)
  geom_sf(aes(fill = pop))          gdf.plot(column="pop", cmap=...)
  scale_*_viridis()                 palettes.resolve_palette(...)
  coord_fixed()                     ax.set_aspect("equal")
  theme_bw() / theme_void()         _apply_theme(ax, "bw" / "void")
  gridExtra::grid.arrange(...)      compose_grid([...])
  ggsave(filename, dpi=, width=)    save_figure(fig, path, settings)

  Key conceptual difference: ggplot2 has a "grammar of graphics": you
  declare *what* you want and it figures out *how*.  ChartSpec is the
  declaration; draw_chart() is the procedural *how*.
─────────────────────────────────────────────────────────────────────────────
"""

import io
import math
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.cm import ScalarMappable
from PIL import Image

from palettes import ColorMapping
from setup_env import DEFAULT_SETTINGS, RenderSettings

matplotlib.use("Agg")


# ─────────────────────────────────────────────────────────────────────────────
# Design system
# ─────────────────────────────────────────────────────────────────────────────
PAL = {
    "bg":      "#FFFFFF",
    "panel":   "#FFFFFF",
    "grid":    "#EBEBEB",   # ggplot2's grey92 gridlines
    "spine":   "#333333",   # theme_bw panel border
    "text":    "#1E2832",
    "subtext": "#5E6E7E",
    "missing": "#D5CFC8",   # polygons with no estimate
    "edge":    "#FFFFFF",
}

# theme name → how much chrome to draw around the panel
THEMES = {
    "bw":      {"grid": True,  "spines": True,  "axis": True},
    "minimal": {"grid": True,  "spines": False, "axis": True},
    "void":    {"grid": False, "spines": False, "axis": False},
}

GEOMETRIES = ("point", "bar", "hex", "contour", "polygon")

# Default aesthetic columns per geometry
DEFAULT_AES = {
    "point":   {"x": "x", "y": "y", "color": "z"},
    "bar":     {"x": "category", "y": None, "color": None},
    "hex":     {"x": "x", "y": "y", "color": None},
    "contour": {"x": "x", "y": "y", "color": "z"},
    "polygon": {"x": None, "y": None, "color": "population"},
}


class InvalidGeometryError(ValueError):
    """The requested geometry cannot be drawn from the supplied data."""


@dataclass
class ChartSpec:
    """Everything needed to draw one panel."""
    data:         pd.DataFrame
    geometry:     str
    mapping:      ColorMapping
    x:            str | None = None
    y:            str | None = None
    color:        str | None = None
    title:        str = ""
    xlabel:       str | None = None
    ylabel:       str | None = None
    legend_title: str | None = None
    theme:        str = "bw"
    equal_aspect: bool = False
    gridsize:     int = 30
    levels:       int = 20
    point_size:   float = 28.0


# ─────────────────────────────────────────────────────────────────────────────
# Spec validation
# ─────────────────────────────────────────────────────────────────────────────

def _require_columns(data: pd.DataFrame, geometry: str, *columns: str | None) -> None:
    missing = [c for c in columns if c is not None and c not in data.columns]
    if missing:
        raise InvalidGeometryError(
            f"{geometry!r} needs column(s) {missing}. Got: {list(data.columns)}"
        )


def _require_numeric(data: pd.DataFrame, geometry: str, *columns: str | None) -> None:
    for col in columns:
        if col is not None and not pd.api.types.is_numeric_dtype(data[col]):
            raise InvalidGeometryError(f"{geometry!r} needs numeric column {col!r}")


def _has_geometry(gdf: gpd.GeoDataFrame) -> bool:
    # .geometry raises AttributeError when no active geometry column is set
    try:
        gdf.geometry
    except AttributeError:
        return False
    return True


def _contour_grid(data: pd.DataFrame, x: str, y: str, z: str) -> pd.DataFrame:
    """
    Pivot long-form x / y / z rows into a y-by-x matrix.

    R equivalent: tidyr::pivot_wider(names_from = x, values_from = z)
    """
    try:
        grid = data.pivot(index=y, columns=x, values=z)
    except ValueError as e:
        raise InvalidGeometryError(f"'contour' needs unique x / y pairs: {e}") from e
    if grid.shape[0] < 2 or grid.shape[1] < 2 or grid.isna().any().any():
        raise InvalidGeometryError(
            f"'contour' needs a complete grid of at least 2 × 2, got {grid.shape} "
            f"with {int(grid.isna().sum().sum())} gaps"
        )
    return grid.sort_index().sort_index(axis=1)


def build_chart(data: pd.DataFrame, geometry: str, mapping: ColorMapping, **options) -> ChartSpec:
    """
    Declare a chart, checking that ``geometry`` fits the shape of ``data``.

    Aesthetic columns default per geometry (DEFAULT_AES); anything passed
    in ``options`` overrides the defaults.  Raises InvalidGeometryError
    when the data cannot carry the geometry, e.g. a polygon choropleth
    requested from a table without a geometry column.
    """
    geometry = str(geometry).strip().lower()
    if geometry not in GEOMETRIES:
        raise InvalidGeometryError(f"Unknown geometry {geometry!r}. Choose one of {list(GEOMETRIES)}")

    aes = dict(DEFAULT_AES[geometry])
    explicit = {key for key in ("x", "y", "color") if key in options}
    for key in explicit:
        aes[key] = options.pop(key)
    # A point chart without a z column is simply uncoloured
    if geometry == "point" and "color" not in explicit and aes["color"] not in data.columns:
        aes["color"] = None

    theme = options.get("theme", DEFAULT_SETTINGS.theme)
    if theme not in THEMES:
        raise ValueError(f"Unknown theme {theme!r}. Choose one of {list(THEMES)}")

    if geometry == "polygon":
        if not isinstance(data, gpd.GeoDataFrame) or not _has_geometry(data):
            raise InvalidGeometryError("'polygon' needs a GeoDataFrame with a geometry column")
        _require_columns(data, geometry, aes["color"])
    elif geometry in ("point", "hex"):
        _require_columns(data, geometry, aes["x"], aes["y"], aes["color"])
        _require_numeric(data, geometry, aes["x"], aes["y"])
        if geometry == "point" and aes["color"] is not None and not mapping.discrete:
            _require_numeric(data, geometry, aes["color"])
    elif geometry == "contour":
        _require_columns(data, geometry, aes["x"], aes["y"], aes["color"])
        _require_numeric(data, geometry, aes["x"], aes["y"], aes["color"])
        _contour_grid(data, aes["x"], aes["y"], aes["color"])
    elif geometry == "bar":
        _require_columns(data, geometry, aes["x"])

    return ChartSpec(data=data, geometry=geometry, mapping=mapping, **aes, **options)


# ─────────────────────────────────────────────────────────────────────────────
# Drawing
# ─────────────────────────────────────────────────────────────────────────────

def _apply_theme(ax: plt.Axes, theme: str) -> None:
    """
    Panel chrome, ggplot2-style.
    R: theme_bw() / theme_minimal() / theme_void()
    """
    opts = THEMES[theme]
    ax.set_facecolor(PAL["panel"])
    if not opts["axis"]:
        ax.set_axis_off()
        return

    if opts["grid"]:
        ax.grid(True, color=PAL["grid"], linewidth=0.6, zorder=0)
        ax.set_axisbelow(True)
    for spine in ax.spines.values():
        spine.set_visible(opts["spines"])
        spine.set_color(PAL["spine"])
        spine.set_linewidth(0.6)
    ax.tick_params(colors=PAL["subtext"], labelsize=8)


def _colorbar(ax: plt.Axes, mappable, label: str | None) -> None:
    cbar = ax.figure.colorbar(mappable, ax=ax, shrink=0.85)
    if label:
        cbar.set_label(label, color=PAL["subtext"])
    cbar.outline.set_visible(False)


def _legend(ax: plt.Axes, lookup: dict, title: str | None) -> None:
    handles = [mpatches.Patch(color=c, label=str(level)) for level, c in lookup.items()]
    ax.legend(handles=handles, title=title, frameon=False,
              loc="center left", bbox_to_anchor=(1.01, 0.5))


def _draw_point(spec: ChartSpec, ax: plt.Axes) -> None:
    df = spec.data
    if spec.color is None:
        ax.scatter(df[spec.x], df[spec.y], color=spec.mapping.colors(1)[0],
                   s=spec.point_size, edgecolors="none")
        return

    if spec.mapping.discrete:
        # One scatter call per level so each gets a legend entry
        lookup = spec.mapping.map_categories(df[spec.color])
        for level, colour in lookup.items():
            subset = df[df[spec.color] == level]
            ax.scatter(subset[spec.x], subset[spec.y], color=colour,
                       s=spec.point_size, edgecolors="none", label=str(level))
        _legend(ax, lookup, spec.legend_title or spec.color)
        return

    values = df[spec.color].to_numpy(dtype=float)
    ax.scatter(df[spec.x], df[spec.y], color=spec.mapping(values),
               s=spec.point_size, edgecolors="none")
    mappable = ScalarMappable(norm=spec.mapping.normalize(values), cmap=spec.mapping.cmap)
    _colorbar(ax, mappable, spec.legend_title or spec.color)


def _draw_bar(spec: ChartSpec, ax: plt.Axes) -> None:
    # R: geom_bar() counts rows per category
    counts = spec.data[spec.x].value_counts().sort_index()
    labels = [str(level) for level in counts.index]

    if spec.mapping.discrete:
        lookup = spec.mapping.map_categories(counts.index)
        colours = [lookup[level] for level in counts.index]
        ax.bar(labels, counts.to_numpy(), color=colours, edgecolor="none", zorder=2)
        _legend(ax, lookup, spec.legend_title or spec.x)
    else:
        heights = counts.to_numpy(dtype=float)
        ax.bar(labels, heights, color=spec.mapping(heights), edgecolor="none", zorder=2)
        mappable = ScalarMappable(norm=spec.mapping.normalize(heights), cmap=spec.mapping.cmap)
        _colorbar(ax, mappable, spec.legend_title or "count")


def _draw_hex(spec: ChartSpec, ax: plt.Axes) -> None:
    hb = ax.hexbin(spec.data[spec.x], spec.data[spec.y], gridsize=spec.gridsize,
                   cmap=spec.mapping.cmap, mincnt=1, linewidths=0.2, zorder=2)
    _colorbar(ax, hb, spec.legend_title or "count")


def _draw_contour(spec: ChartSpec, ax: plt.Axes) -> None:
    grid = _contour_grid(spec.data, spec.x, spec.y, spec.color)
    cs = ax.contourf(grid.columns.to_numpy(), grid.index.to_numpy(), grid.to_numpy(),
                     levels=spec.levels, cmap=spec.mapping.cmap, zorder=2)
    _colorbar(ax, cs, spec.legend_title or spec.color)


def _draw_polygon(spec: ChartSpec, ax: plt.Axes) -> None:
    gdf = spec.data
    style = dict(ax=ax, edgecolor=PAL["edge"], linewidth=0.1)

    if spec.mapping.discrete:
        lookup = spec.mapping.map_categories(gdf[spec.color])
        for level, colour in lookup.items():
            gdf[gdf[spec.color] == level].plot(color=colour, **style)
        _legend(ax, lookup, spec.legend_title or spec.color)
    else:
        values = gdf[spec.color].to_numpy(dtype=float)
        norm = spec.mapping.normalize(values)
        gdf.plot(column=spec.color, cmap=spec.mapping.cmap,
                 vmin=norm.vmin, vmax=norm.vmax,
                 missing_kwds={"color": PAL["missing"]}, **style)
        mappable = ScalarMappable(norm=norm, cmap=spec.mapping.cmap)
        _colorbar(ax, mappable, spec.legend_title or spec.color)
    ax.set_aspect("equal")


DRAWERS = {
    "point":   _draw_point,
    "bar":     _draw_bar,
    "hex":     _draw_hex,
    "contour": _draw_contour,
    "polygon": _draw_polygon,
}


def draw_chart(spec: ChartSpec, ax: plt.Axes) -> plt.Axes:
    """Draw one panel: geometry layer, colour scale, labels, theme."""
    _apply_theme(ax, spec.theme)
    DRAWERS[spec.geometry](spec, ax)

    if spec.equal_aspect:
        # R: coord_fixed()
        ax.set_aspect("equal")

    ax.set_title(spec.title, loc="left", color=PAL["text"])
    if THEMES[spec.theme]["axis"]:
        ax.set_xlabel(spec.xlabel if spec.xlabel is not None else (spec.x or ""),
                      color=PAL["subtext"])
        default_y = "count" if spec.geometry == "bar" else (spec.y or "")
        ax.set_ylabel(spec.ylabel if spec.ylabel is not None else default_y,
                      color=PAL["subtext"])
    return ax


def render_chart(spec: ChartSpec, settings: RenderSettings = DEFAULT_SETTINGS):
    """Single-panel figure. Returns (fig, ax), like plt.subplots()."""
    fig, ax = plt.subplots(
        figsize=(settings.fig_width, settings.fig_height),
        dpi=settings.dpi,
        layout="constrained",
    )
    draw_chart(spec, ax)
    return fig, ax


def compose_grid(specs: list[ChartSpec], settings: RenderSettings = DEFAULT_SETTINGS,
                 ncol: int | None = None, title: str | None = None):
    """
    Lay several charts out side by side, in the order given.

    R equivalent: gridExtra::grid.arrange(p1, p2, p3, ncol = 3)

    Returns (fig, axes) where axes holds one Axes per spec, same order.
    """
    if not specs:
        raise ValueError("compose_grid() needs at least one chart")
    if ncol is None:
        ncol = len(specs)
    elif ncol < 1:
        raise ValueError(f"ncol must be at least 1, got {ncol}")
    nrow = math.ceil(len(specs) / ncol)

    fig, grid = plt.subplots(
        nrow, ncol,
        figsize=(settings.fig_width * ncol / 2, settings.fig_height * nrow / 1.6),
        dpi=settings.dpi,
        layout="constrained",
        squeeze=False,
    )
    cells = list(grid.ravel())
    axes  = [draw_chart(spec, ax) for spec, ax in zip(specs, cells)]

    # Empty trailing cells in the last row
    for ax in cells[len(specs):]:
        ax.remove()

    if title:
        fig.suptitle(title, x=0.01, ha="left", color=PAL["text"], fontweight="bold")
    return fig, axes


def render_palette_gallery(mappings: list[ColorMapping], settings: RenderSettings = DEFAULT_SETTINGS):
    """
    One horizontal gradient strip per palette, labelled with its name.

    R equivalent:
        image(matrix(1:256), col = viridis(256, option = "A"), axes = FALSE)
    """
    gradient = np.linspace(0, 1, 256)[np.newaxis, :]
    fig, axes = plt.subplots(
        len(mappings), 1,
        figsize=(settings.fig_width, 0.45 * len(mappings) + 0.3),
        dpi=settings.dpi,
        layout="constrained",
        squeeze=False,
    )
    for mapping, ax in zip(mappings, axes[:, 0]):
        ax.imshow(gradient, aspect="auto", cmap=mapping.cmap)
        ax.set_axis_off()
        ax.text(-0.01, 0.5, mapping.name, transform=ax.transAxes,
                ha="right", va="center", fontsize=9, color=PAL["text"])
    return fig, list(axes[:, 0])


# ─────────────────────────────────────────────────────────────────────────────
# Saving
# ─────────────────────────────────────────────────────────────────────────────

def save_figure(fig: plt.Figure, path: Path, settings: RenderSettings = DEFAULT_SETTINGS) -> Path:
    """
    Write ``fig`` as a PNG exactly ``settings.image_width_px`` wide.

    bbox_inches="tight" makes the rendered size unpredictable, so we render
    to a buffer first and let Pillow pin the width (height keeps the
    aspect ratio).

    R equivalent: ggsave(path, width = 7, dpi = 96) then
        magick::image_resize(img, "700x")
    """
    path = Path(path)
    buf = io.BytesIO()
    try:
        fig.savefig(buf, format="png", dpi=settings.dpi, bbox_inches="tight",
                    facecolor=PAL["bg"], edgecolor="none")
    finally:
        plt.close(fig)   # free memory, R equivalent: dev.off()
    buf.seek(0)

    rendered = Image.open(buf).convert("RGB")
    w, h     = rendered.size
    width    = settings.image_width_px
    height   = max(1, round(h * width / w))

    # High-quality Lanczos resampling
    final = rendered.resize((width, height), Image.LANCZOS)
    final.save(path, dpi=(settings.dpi, settings.dpi))

    print(f"[save]  {path.name}  |  {path.stat().st_size / 1024:.0f} KB  |  {width} × {height} px")
    return path
