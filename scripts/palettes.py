"""
scripts/palettes.py
===================
Thin selector over matplotlib's built-in viridis family of colour maps.

Nothing here does colour science; matplotlib ships the perceptually
uniform maps.  This module only decides *which* map, which slice of it,
which direction, and whether the scale is continuous or discrete.

─────────────────────────────────────────────────────────────────────────────
R → Python translation guide
─────────────────────────────────────────────────────────────────────────────
  R / viridis                            Python / matplotlib equivalent
  ─────────────────────────────────────  ────────────────────────────────────
  viridis(n, option = "A")               resolve_palette(PaletteSelection("A")).colors(n)
  viridis(n, begin = .2, end = .8)       PaletteSelection(begin=.2, end=.8)
  viridis(n, direction = -1)             PaletteSelection(reverse=True)
  scale_fill_viridis()                   ColorMapping(values) → RGBA rows
  scale_fill_viridis(discrete = TRUE)    ColorMapping.map_categories(labels)
─────────────────────────────────────────────────────────────────────────────
"""

from dataclasses import dataclass, replace

import numpy as np
import pandas as pd
import matplotlib
from matplotlib.colors import ListedColormap, Normalize, to_hex


# ─────────────────────────────────────────────────────────────────────────────
# The closed set of palettes
# ─────────────────────────────────────────────────────────────────────────────
# name → (option letter, short description).  The name doubles as the key
# into matplotlib.colormaps.
PALETTES = {
    "viridis": ("D", "default sequential"),
    "plasma":  ("C", "vibrant sequential"),
    "inferno": ("B", "fiery sequential"),
    "magma":   ("A", "dark-contrast sequential"),
    "cividis": ("E", "colour-blind safe sequential"),
    "turbo":   ("H", "rainbow-like"),
}

# Letter options and the "default" alias resolve to canonical names
ALIASES = {letter.lower(): name for name, (letter, _) in PALETTES.items()}
ALIASES["default"] = "viridis"

N_SAMPLES = 256


class InvalidPaletteError(ValueError):
    """The requested palette is not one of PALETTES, or its options are out of range."""


@dataclass(frozen=True)
class PaletteSelection:
    """
    Parameter bundle for one palette choice.

    begin / end pick the slice of the map to use (0 = darkest end of
    viridis, 1 = brightest); reverse flips the direction, exactly like
    viridis' ``direction = -1``.
    """
    name:     str   = "viridis"
    discrete: bool  = False
    reverse:  bool  = False
    begin:    float = 0.0
    end:      float = 1.0
    alpha:    float = 1.0

    @property
    def mode(self) -> str:
        return "discrete" if self.discrete else "continuous"


def canonical_name(name: str) -> str:
    """Map a palette name, option letter or alias onto a PALETTES key."""
    if not isinstance(name, str):
        raise InvalidPaletteError(f"Palette name must be a string, got {name!r}")
    key = name.strip().lower()
    if key in PALETTES:
        return key
    if key in ALIASES:
        return ALIASES[key]
    raise InvalidPaletteError(
        f"Unknown palette {name!r}. Choose one of {sorted(PALETTES)} "
        f"or an option letter {sorted(letter for letter, _ in PALETTES.values())}."
    )


class ColorMapping:
    """
    A resolved palette, ready for the renderer.

    ``cmap`` is a ListedColormap sampled over the selected slice, in the
    selected direction, at the selected opacity.  Call the mapping on an
    array of numbers for continuous colours, or use colors() /
    map_categories() for discrete ones.
    """

    def __init__(self, selection: PaletteSelection):
        self.selection = selection
        self.name      = canonical_name(selection.name)
        self._base     = matplotlib.colormaps[self.name]

        for field_name in ("begin", "end", "alpha"):
            value = getattr(selection, field_name)
            if not 0.0 <= value <= 1.0:
                raise InvalidPaletteError(f"{field_name} must lie in [0, 1], got {value!r}")

        begin, end = selection.begin, selection.end
        if selection.reverse:
            begin, end = end, begin
        self._begin, self._end = begin, end

        samples = self._sample(N_SAMPLES)
        suffix  = "_r" if selection.reverse else ""
        self.cmap = ListedColormap(samples, name=f"{self.name}{suffix}")

    def __repr__(self) -> str:
        return f"ColorMapping({self.selection!r})"

    @property
    def discrete(self) -> bool:
        return self.selection.discrete

    def _sample(self, n: int) -> np.ndarray:
        rgba = self._base(np.linspace(self._begin, self._end, n))
        rgba[:, 3] = self.selection.alpha
        return rgba

    def colors(self, n: int) -> list[str]:
        """``n`` evenly spaced hex colours, the discrete palette."""
        if n < 1:
            return []
        keep_alpha = self.selection.alpha < 1
        return [to_hex(c, keep_alpha=keep_alpha) for c in self._sample(n)]

    def map_categories(self, labels) -> dict:
        """One distinct colour per unique label, labels in sorted order."""
        levels = sorted(pd.unique(pd.Series(labels).dropna()))
        return dict(zip(levels, self.colors(len(levels))))

    def normalize(self, values, vmin=None, vmax=None) -> Normalize:
        values = np.asarray(values, dtype=float)
        finite = values[np.isfinite(values)]
        # Nothing to scale against (e.g. every estimate was a sentinel)
        if finite.size == 0:
            lo, hi = 0.0, 1.0
        else:
            lo, hi = finite.min(), finite.max()
        return Normalize(vmin=lo if vmin is None else vmin,
                         vmax=hi if vmax is None else vmax)

    def __call__(self, values, vmin=None, vmax=None) -> np.ndarray:
        """Continuous mapping: numbers → (n, 4) RGBA array."""
        values = np.asarray(values, dtype=float)
        if values.size == 0:
            return np.empty((0, 4))
        return self.cmap(self.normalize(values, vmin, vmax)(values))

    def reversed(self) -> "ColorMapping":
        """The same palette with the direction flag flipped."""
        return ColorMapping(replace(self.selection, reverse=not self.selection.reverse))


def resolve_palette(selection) -> ColorMapping:
    """
    Turn a PaletteSelection (or a bare palette name) into a ColorMapping.

    Raises InvalidPaletteError for names outside PALETTES and for
    begin / end / alpha outside [0, 1].
    """
    if isinstance(selection, str):
        selection = PaletteSelection(name=selection)

    mapping = ColorMapping(selection)
    print(f"[palette] {mapping.name} ({PALETTES[mapping.name][1]}), "
          f"{selection.mode}{', reversed' if selection.reverse else ''}")
    return mapping


def palette_swatch(n: int, name: str = "viridis") -> list[str]:
    """
    Shortcut for ``n`` hex colours of a palette.
    R equivalent: viridis::viridis(n, option = name)
    """
    return ColorMapping(PaletteSelection(name=name, discrete=True)).colors(n)
