from __future__ import annotations

import warnings

import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import matplotlib.pyplot as plt
import pytest
from shapely.geometry import box

from setup_env import RenderSettings


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    plt.close("all")


@pytest.fixture(autouse=True)
def _restore_warning_filters():
    # initialize() installs a process-wide "ignore" filter
    with warnings.catch_warnings():
        yield


@pytest.fixture
def settings(tmp_path) -> RenderSettings:
    """Small, fast render settings writing under tmp_path."""
    return RenderSettings(
        fig_width=4.0,
        fig_height=3.0,
        dpi=50,
        image_width_px=200,
        output_dir=tmp_path / "output",
        images_dir=tmp_path / "images",
    )


@pytest.fixture
def tracts() -> gpd.GeoDataFrame:
    """Four square 'tracts' already in the planar CRS the vignette uses."""
    cells = [box(380_000 + i * 1_000, 3_760_000, 381_000 + i * 1_000, 3_761_000)
             for i in range(4)]
    return gpd.GeoDataFrame(
        {
            "GEOID": ["06037000100", "06037000200", "06037000300", "06037000400"],
            "NAME": [f"Census Tract {i}" for i in range(1, 5)],
            "population": [1200.0, 3400.0, 5600.0, 7800.0],
        },
        geometry=cells,
        crs=26911,
    )
