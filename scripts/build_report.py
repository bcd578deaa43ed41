"""
scripts/build_report.py
=======================
Render the viridis vignette: a short narrative on the viridis colour maps,
illustrated with synthetic samples, a damped ripple surface and a census
tract choropleth.

The steps run in a fixed order because each depends on the one before:

    initialize  →  data  →  palettes  →  figures  →  document

Usage:
    python scripts/build_report.py

Output:
    output/viridis_vignette.md   (Markdown with embedded figures)
    images/*.png                 (700 px wide, 96 DPI)

Any failure stops the run; there is no partial document.
─────────────────────────────────────────────────────────────────────────────
"""

import os
import platform
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from fetch_data import (
    DataFormatError,
    NetworkError,
    fetch_geo_tracts,
    generate_categorical_sample,
    generate_ripple_surface,
    generate_synthetic_sample,
)
from palettes import PALETTES, InvalidPaletteError, PaletteSelection, resolve_palette
from setup_env import DEFAULT_SETTINGS, FilesystemError, RenderSettings, initialize
from visualize import (
    InvalidGeometryError,
    build_chart,
    compose_grid,
    render_chart,
    render_palette_gallery,
    save_figure,
)

# ─────────────────────────────────────────────────────────────────────────────
# Literal parameters of the document
# ─────────────────────────────────────────────────────────────────────────────
REPORT_NAME = "viridis_vignette.md"

HEX_POINTS,  HEX_SEED     = 10_000, 2
COMPARE_POINTS, COMPARE_SEED = 50, 1
BAR_POINTS,  BAR_SEED,  BAR_LETTERS = 50, 123, 5
RIPPLE_RESOLUTION = 40

# Los Angeles County, CA: total population by tract
CENSUS_GEOGRAPHY = "tract"
CENSUS_VARIABLE  = "B01003_001"
CENSUS_YEAR      = 2020
CENSUS_REGION    = ("06", "037")
TARGET_CRS       = 26911          # NAD83 / UTM zone 11N

# Palettes shown side by side in the comparison grid, in panel order
COMPARISON_PALETTES = ["viridis", "magma", "turbo"]

SESSION_PACKAGES = ["numpy", "pandas", "matplotlib", "geopandas", "shapely",
                    "pyproj", "requests", "Pillow"]

ERRORS = (FilesystemError, NetworkError, DataFormatError,
          InvalidPaletteError, InvalidGeometryError)


# ─────────────────────────────────────────────────────────────────────────────
# Narrative
# ─────────────────────────────────────────────────────────────────────────────
INTRO = """\
# Introduction to the viridis colour maps

The viridis colour maps are designed to be:

- **Colourful**, spanning as wide a palette as possible so as to make
  differences easy to see,
- **Perceptually uniform**, meaning that values close to each other have
  similar-appearing colours and values far away from each other have more
  different-appearing colours, consistently across the range of values,
- **Robust to colour-blindness**, so that the above properties hold true for
  people with common forms of colour-blindness, as well as in grey scale
  printing.

Six variants are available: the default `viridis` ("D"), `magma` ("A"),
`inferno` ("B"), `plasma` ("C"), `cividis` ("E") and the rainbow-like
`turbo` ("H")."""

GALLERY_TEXT = """\
## The colour scales

Each strip below runs the full range of one map, from its darkest end on
the left to its brightest on the right."""

RIPPLE_TEXT = """\
## A damped ripple

Filled contours of `cos(r²) · exp(-r / 2π)` make a good stress test: a
map that is not perceptually uniform invents bands and edges that are not
in the data."""

HEX_TEXT = """\
## Hexagonal binning

Ten thousand draws from a bivariate standard normal, binned into hexagons
and coloured by count with the default map."""

COMPARE_TEXT = """\
## Comparing palettes

The same fifty random points, coloured by a third random variable, under
three different maps."""

BAR_TEXT = """\
## Discrete scales

With a discrete scale each category gets its own, evenly spaced colour.
`cividis` keeps those colours distinguishable for readers with colour
vision deficiency."""

MAP_TEXT = """\
## A census choropleth

Total population (ACS 5-year estimate, variable `{variable}`, {year}) for
every census tract in state {state}, county {county}, projected to
EPSG:{crs}.  The same table is drawn twice: once with the default direction
and once reversed, so that the most populous tracts are dark."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _figure(fig, name: str, caption: str, settings: RenderSettings) -> str:
    """Save ``fig`` into the images folder and return its Markdown embed."""
    path = save_figure(fig, settings.images_dir / name, settings)
    # Relative link so output/ and images/ can move together
    rel = Path(os.path.relpath(path, settings.output_dir)).as_posix()
    return f"![{caption}]({rel})"


def session_info() -> list[str]:
    """
    Interpreter, platform and library versions.
    R equivalent: sessionInfo()
    """
    lines = [
        f"Python   {platform.python_version()}",
        f"Platform {platform.platform()}",
    ]
    for pkg in SESSION_PACKAGES:
        try:
            ver = version(pkg)
        except PackageNotFoundError:
            ver = "not installed"
        lines.append(f"  {pkg:<11} {ver}")
    return lines


# ─────────────────────────────────────────────────────────────────────────────
# Sections
# ─────────────────────────────────────────────────────────────────────────────

def gallery_section(settings: RenderSettings) -> list[str]:
    mappings = [resolve_palette(PaletteSelection(name)) for name in PALETTES]
    fig, _ = render_palette_gallery(mappings, settings)
    return [GALLERY_TEXT, _figure(fig, "palette_gallery.png", "viridis colour maps", settings)]


def ripple_section(settings: RenderSettings) -> list[str]:
    surface = generate_ripple_surface(RIPPLE_RESOLUTION)
    print(f"[data]  Ripple surface: {len(surface)} grid points")
    spec = build_chart(surface, "contour", resolve_palette(PaletteSelection()),
                       title="Damped ripple", theme="void", equal_aspect=True,
                       legend_title="z")
    fig, _ = render_chart(spec, settings)
    return [RIPPLE_TEXT, _figure(fig, "ripple_contour.png", "filled contour, viridis", settings)]


def hex_section(settings: RenderSettings) -> list[str]:
    sample = generate_synthetic_sample(HEX_POINTS, seed=HEX_SEED)
    print(f"[data]  Hexbin sample: {len(sample)} rows")
    spec = build_chart(sample, "hex", resolve_palette(PaletteSelection()),
                       title=f"{HEX_POINTS:,} bivariate normal draws", equal_aspect=True,
                       theme=settings.theme)
    fig, _ = render_chart(spec, settings)
    return [HEX_TEXT, _figure(fig, "hexbin.png", "hexbin, viridis", settings)]


def comparison_section(settings: RenderSettings) -> list[str]:
    sample = generate_synthetic_sample(COMPARE_POINTS, seed=COMPARE_SEED)
    print(f"[data]  Comparison sample: {len(sample)} rows")
    specs = [
        build_chart(sample, "point", resolve_palette(PaletteSelection(name)),
                    title=name, theme=settings.theme, point_size=40)
        for name in COMPARISON_PALETTES
    ]
    fig, _ = compose_grid(specs, settings)
    caption = "same points, " + " / ".join(COMPARISON_PALETTES)
    return [COMPARE_TEXT, _figure(fig, "palette_comparison.png", caption, settings)]


def bar_section(settings: RenderSettings) -> list[str]:
    sample = generate_categorical_sample(BAR_POINTS, seed=BAR_SEED, alphabet_size=BAR_LETTERS)
    print(f"[data]  Categorical sample: {len(sample)} rows, "
          f"{sample['category'].nunique()} categories")
    mapping = resolve_palette(PaletteSelection("cividis", discrete=True))
    spec = build_chart(sample, "bar", mapping, title="Rows per category",
                       theme=settings.theme)
    fig, _ = render_chart(spec, settings)
    return [BAR_TEXT, _figure(fig, "category_bars.png", "discrete cividis", settings)]


def map_section(settings: RenderSettings) -> list[str]:
    # Fetched once; both maps below share the same read-only table
    tracts = fetch_geo_tracts(CENSUS_GEOGRAPHY, CENSUS_VARIABLE, CENSUS_YEAR,
                              CENSUS_REGION, TARGET_CRS)
    print(f"[data]  Tracts: {len(tracts)}  |  population total "
          f"{tracts['population'].sum():,.0f}")

    forward  = resolve_palette(PaletteSelection())
    backward = forward.reversed()

    lines = [MAP_TEXT.format(variable=CENSUS_VARIABLE, year=CENSUS_YEAR,
                             state=CENSUS_REGION[0], county=CENSUS_REGION[1],
                             crs=TARGET_CRS)]
    for mapping, name, caption in [
        (forward,  "tracts_population.png",          "tract population, viridis"),
        (backward, "tracts_population_reversed.png", "tract population, viridis reversed"),
    ]:
        spec = build_chart(tracts, "polygon", mapping, title=caption,
                           theme="void", legend_title="population")
        fig, _ = render_chart(spec, settings)
        lines.append(_figure(fig, name, caption, settings))
    return lines


# ─────────────────────────────────────────────────────────────────────────────
# Assembly
# ─────────────────────────────────────────────────────────────────────────────

SECTIONS = [
    gallery_section,
    ripple_section,
    hex_section,
    comparison_section,
    bar_section,
    map_section,
]


def assemble_report(settings: RenderSettings = DEFAULT_SETTINGS) -> Path:
    """
    Run every section in order and write the Markdown document.

    Returns the path of the written document.
    """
    settings = initialize(settings)

    blocks = [INTRO]
    for section in SECTIONS:
        print(f"\n▶ {section.__name__.replace('_section', '')}")
        blocks.extend(section(settings))

    info = session_info()
    blocks.append("## Session info\n\n```\n" + "\n".join(info) + "\n```")

    out = settings.output_dir / REPORT_NAME
    out.write_text("\n\n".join(blocks) + "\n", encoding="utf-8")
    print(f"\n[done]  Report saved → {out}")

    print("\n[info]  ── Session ─────────────────────────────────────────")
    for line in info:
        print(f"  {line}")
    return out


# ─────────────────────────────────────────────────────────────────────────────
# MAIN
# ─────────────────────────────────────────────────────────────────────────────

def main() -> None:
    print("=" * 58)
    print("  viridis — Vignette")
    print("=" * 58)
    try:
        assemble_report()
    except ERRORS as e:
        print(f"\n[error] {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
