"""
scripts/fetch_data.py
=====================
Produce every dataset the viridis vignette draws:

  SYNTHETIC   seeded standard-normal samples (numeric and categorical)
                and the damped "ripple" surface for the filled contour.
  CENSUS      ACS 5-year tract populations joined to Census cartographic
                boundary polygons, reprojected to a planar CRS.

The census fetch is a single attempt: no cache, no retry.  If the API is
unreachable you get NetworkError; if it answers with something that is not
the expected table you get DataFormatError.  Nothing half-built is returned.

─────────────────────────────────────────────────────────────────────────────
R → Python translation guide (woven through comments below)
─────────────────────────────────────────────────────────────────────────────
  R                           Python / pandas equivalent
  ─────────────────────────── ────────────────────────────────────────────
  set.seed(1); rnorm(n)       np.random.default_rng(1).standard_normal(n)
  sample(letters[1:5], n,     rng.choice(list("abcde"), size=n)
    replace=TRUE)
  outer(x^2, y^2, "+")        np.add.outer(x**2, y**2)
  tidycensus::get_acs(        requests.get(ACS_URL, params=...)  +
    geometry=TRUE)              geopandas.read_file(boundary zip)
  sf::st_transform(26911)     gdf.to_crs(26911)
  dplyr::select(-moe)         gdf[["GEOID", "NAME", ...]]
  dplyr::rename(pop=estimate) df.rename(columns={...})
  readr::parse_number()       custom parse_number() below
─────────────────────────────────────────────────────────────────────────────
"""

import string
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import requests
import geopandas as gpd


# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────
ACS_URL_TEMPLATE      = "https://api.census.gov/data/{year}/acs/acs5"
BOUNDARY_URL_TEMPLATE = ("https://www2.census.gov/geo/tiger/GENZ{year}/shp/"
                         "cb_{year}_{scope}_{layer}_500k.zip")

# Census geography level → (boundary file layer, per-state file?)
# County boundaries ship as one national file; tracts and block groups
# ship one file per state.
GEOGRAPHY_LAYERS = {
    "county":      ("county", False),
    "tract":       ("tract",  True),
    "block group": ("bg",     True),
}

# Columns the ACS API returns for each geography, in GEOID order
GEOID_PARTS = ["state", "county", "tract", "block group"]

POPULATION_FIELD = "population"

# Blocking request: no timeout is configured for the census fetch.
REQUEST_TIMEOUT = None

HEADERS = {"User-Agent": "viridis-vignette/0.1 (reproducible documentation build)"}


class NetworkError(OSError):
    """The census service could not be reached or refused the request."""


class DataFormatError(ValueError):
    """The census service answered, but not with the expected schema."""


# =============================================================================
# SYNTHETIC samples
# =============================================================================

def _check_count(count: int, name: str = "count") -> None:
    # bool is a subclass of int
    if isinstance(count, bool) or not isinstance(count, (int, np.integer)) or count < 1:
        raise ValueError(f"{name} must be a positive integer, got {count!r}")


def generate_synthetic_sample(count: int, seed: int) -> pd.DataFrame:
    """
    Draw ``count`` independent (x, y, z) triples from N(0, 1).

    R equivalent:
        set.seed(seed)
        data.frame(x = rnorm(n), y = rnorm(n), z = rnorm(n))

    The same (count, seed) always yields a bit-identical DataFrame.
    """
    _check_count(count)
    rng = np.random.default_rng(seed)
    # One (count, 3) draw keeps the columns independent of each other
    draws = rng.standard_normal((count, 3))
    return pd.DataFrame(draws, columns=["x", "y", "z"])


def generate_categorical_sample(count: int, seed: int, alphabet_size: int = 5) -> pd.DataFrame:
    """
    Pair a random letter label with an independent N(0, 1) value per row.

    R equivalent:
        set.seed(seed)
        data.frame(category = sample(letters[1:k], n, replace = TRUE),
                   value    = rnorm(n))
    """
    _check_count(count)
    _check_count(alphabet_size, "alphabet_size")
    if alphabet_size > len(string.ascii_lowercase):
        raise ValueError(f"alphabet_size must be at most 26, got {alphabet_size}")

    rng      = np.random.default_rng(seed)
    alphabet = np.array(list(string.ascii_lowercase[:alphabet_size]))
    labels   = rng.choice(alphabet, size=count, replace=True)
    values   = rng.standard_normal(count)
    return pd.DataFrame({"category": labels, "value": values})


def generate_ripple_surface(resolution: int = 40) -> pd.DataFrame:
    """
    Evaluate the damped ripple z = cos(r²) · exp(-r / 2π) on a square grid
    spanning [-8π, 8π] in both directions, returned in long form.

    R equivalent:
        x <- y <- seq(-8*pi, 8*pi, len = 40)
        r <- sqrt(outer(x^2, y^2, "+"))
        z <- cos(r^2) * exp(-r / (2*pi))
    """
    _check_count(resolution, "resolution")
    if resolution < 2:
        raise ValueError(f"resolution must be at least 2, got {resolution}")

    axis   = np.linspace(-8 * np.pi, 8 * np.pi, resolution)
    xx, yy = np.meshgrid(axis, axis)
    r      = np.sqrt(xx ** 2 + yy ** 2)
    z      = np.cos(r ** 2) * np.exp(-r / (2 * np.pi))

    # ravel() flattens row-major, like tidyr::pivot_longer() here
    return pd.DataFrame({"x": xx.ravel(), "y": yy.ravel(), "z": z.ravel()})


# =============================================================================
# CENSUS tracts
# =============================================================================

def parse_number(series: pd.Series) -> pd.Series:
    """
    Coerce ACS estimate strings to float.

    The ACS API reports "not available" as large negative sentinels
    (-666666666, -999999999, ...), so any negative estimate becomes NaN.
    R equivalent: readr::parse_number() + dplyr::na_if()
    """
    numbers = pd.to_numeric(series, errors="coerce")
    return numbers.where(numbers >= 0)


def _split_region(region_code) -> tuple[str, str | None]:
    """
    Accept "06037", ("06", "037") or just "06" and return (state, county).
    """
    if isinstance(region_code, (tuple, list)):
        state, county = (list(region_code) + [None])[:2]
    else:
        code = str(region_code).strip()
        state, county = code[:2], (code[2:] or None)
    if not state or not str(state).isdigit() or len(str(state)) != 2:
        raise ValueError(f"region_code must start with a 2-digit state FIPS code, got {region_code!r}")
    if county is not None and (not str(county).isdigit() or len(str(county)) != 3):
        raise ValueError(f"county FIPS code must be 3 digits, got {county!r}")
    return str(state), (str(county) if county is not None else None)


def _find_column(columns: pd.Index, keywords: list[str]) -> str | None:
    """
    Case-insensitive column search by keyword list.

    Boundary files name the id column "GEOID" in most vintages and
    "GEOID20" / "GEOID10" in some, so exact matches are tried first and
    prefix matches second.
    """
    normalised = {str(c).lower(): c for c in columns}
    for kw in keywords:
        if kw in normalised:
            return normalised[kw]
    for kw in keywords:
        for norm, orig in normalised.items():
            if norm.startswith(kw):
                return orig
    return None


def _get(url: str, params=None) -> requests.Response:
    """Single GET; every transport or HTTP failure becomes NetworkError."""
    try:
        resp = requests.get(url, params=params, headers=HEADERS, timeout=REQUEST_TIMEOUT)
        # raise_for_status() throws on 4xx/5xx
        # R equivalent: httr::stop_for_status(resp)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise NetworkError(f"Request to {url} failed: {e}") from e
    return resp


def _fetch_acs_table(geography: str, variable_id: str, year: int,
                     state: str, county: str | None,
                     api_key: str | None = None) -> pd.DataFrame:
    """
    Query the ACS 5-year endpoint and return GEOID / NAME / estimate.
    """
    estimate_col = f"{variable_id}E"
    moe_col      = f"{variable_id}M"

    # A list of tuples lets "in" repeat, as the Census API documents it
    params = [("get", f"NAME,{estimate_col},{moe_col}")]
    if geography == "county":
        params.append(("for", f"county:{county or '*'}"))
        params.append(("in", f"state:{state}"))
    else:
        params.append(("for", f"{geography}:*"))
        params.append(("in", f"state:{state}"))
        if county is not None:
            params.append(("in", f"county:{county}"))
    if api_key:
        params.append(("key", api_key))

    url = ACS_URL_TEMPLATE.format(year=year)
    print(f"[fetch] ACS {year} {variable_id} by {geography} (state {state}"
          f"{', county ' + county if county else ''})")
    resp = _get(url, params=params)

    try:
        rows = resp.json()
    except ValueError as e:
        raise DataFormatError(f"ACS response is not JSON: {resp.text[:200]!r}") from e

    # Expected shape: [[header...], [row...], ...]
    if (not isinstance(rows, list) or len(rows) < 2
            or not all(isinstance(r, list) for r in rows)):
        raise DataFormatError("ACS response is not a header + rows table")

    try:
        df = pd.DataFrame(rows[1:], columns=rows[0])
    except ValueError as e:
        raise DataFormatError(f"ACS rows do not match the header: {e}") from e
    parts = [p for p in GEOID_PARTS if p in df.columns]
    missing = [c for c in ("NAME", estimate_col) if c not in df.columns]
    if missing or geography not in parts:
        raise DataFormatError(
            f"ACS table is missing columns {missing or [geography]}. Got: {list(df.columns)}"
        )

    # GEOID = state + county + tract (+ block group), zero-padded strings
    df["GEOID"] = df[parts].astype(str).agg("".join, axis=1)
    df[POPULATION_FIELD] = parse_number(df[estimate_col])
    print(f"[info]  ACS rows: {len(df)}")
    return df[["GEOID", "NAME", POPULATION_FIELD]]


def _fetch_boundaries(geography: str, year: int, state: str) -> gpd.GeoDataFrame:
    """
    Download the cartographic boundary shapefile for ``geography``.

    R equivalent: tigris::tracts(state, cb = TRUE, year = year)
    """
    layer, per_state = GEOGRAPHY_LAYERS[geography]
    scope = state if per_state else "us"
    url   = BOUNDARY_URL_TEMPLATE.format(year=year, scope=scope, layer=layer)

    print(f"[fetch] Boundaries: {url}")
    resp = _get(url)

    # The shapefile lives inside a ZIP; geopandas reads it through zip://
    with tempfile.TemporaryDirectory() as tmp:
        archive = Path(tmp) / "boundaries.zip"
        archive.write_bytes(resp.content)
        try:
            shapes = gpd.read_file(f"zip://{archive}")
        except Exception as e:
            raise DataFormatError(f"Could not read boundary file {url}: {e}") from e

    geoid_col = _find_column(shapes.columns, ["geoid", "geoid20", "geoid10"])
    if geoid_col is None or shapes.crs is None:
        raise DataFormatError(
            f"Boundary file lacks a GEOID column or CRS. Got: {list(shapes.columns)}"
        )
    shapes = shapes.rename(columns={geoid_col: "GEOID"})
    return shapes[["GEOID", "geometry"]]


def fetch_geo_tracts(geography: str = "tract",
                     variable_id: str = "B01003_001",
                     year: int = 2020,
                     region_code="06037",
                     target_crs=26911,
                     api_key: str | None = None) -> gpd.GeoDataFrame:
    """
    Fetch one ACS variable with polygon geometry for a state/county.

    Python equivalent of:
        get_acs(geography = "tract", variables = "B01003_001", year = 2020,
                state = "06", county = "037", geometry = TRUE) |>
            sf::st_transform(26911) |>
            dplyr::select(GEOID, NAME, population = estimate, geometry)

    Returns a GeoDataFrame with columns GEOID, NAME, population, geometry
    in ``target_crs``.  The caller should treat it as read-only and share it
    between renderings rather than fetching again.
    """
    if geography not in GEOGRAPHY_LAYERS:
        raise ValueError(f"geography must be one of {sorted(GEOGRAPHY_LAYERS)}, got {geography!r}")
    state, county = _split_region(region_code)

    table  = _fetch_acs_table(geography, variable_id, year, state, county, api_key=api_key)
    shapes = _fetch_boundaries(geography, year, state)

    # Inner join keeps only polygons that have an estimate (and vice versa)
    # R equivalent: dplyr::inner_join(shapes, table, by = "GEOID")
    merged = shapes.merge(table, on="GEOID", how="inner")
    if merged.empty:
        raise DataFormatError(
            f"No {geography} geometries matched the ACS table for region {region_code!r}"
        )

    try:
        merged = merged.to_crs(target_crs)
    except Exception as e:
        raise DataFormatError(f"Cannot reproject to {target_crs!r}: {e}") from e

    merged = merged[["GEOID", "NAME", POPULATION_FIELD, "geometry"]]
    merged = merged.sort_values("GEOID").reset_index(drop=True)
    print(f"[ok]    {len(merged)} {geography} polygons in {merged.crs.to_string()}")
    return merged
