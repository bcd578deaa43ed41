from __future__ import annotations

import io
import zipfile

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import requests
from shapely.geometry import box

import fetch_data
from fetch_data import (
    DataFormatError,
    NetworkError,
    fetch_geo_tracts,
    generate_categorical_sample,
    generate_ripple_surface,
    generate_synthetic_sample,
    parse_number,
)


class FakeResponse:
    def __init__(self, payload=None, text="", status=200, content=b""):
        self._payload = payload
        self.text = text
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if self._payload is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


ACS_ROWS = [
    ["NAME", "B01003_001E", "B01003_001M", "state", "county", "tract"],
    ["Census Tract 1", "1200", "150", "06", "037", "000100"],
    ["Census Tract 2", "3400", "210", "06", "037", "000200"],
    ["Census Tract 3", "-666666666", "-222222222", "06", "037", "000300"],
]


def _boundaries(*_args, **_kwargs) -> gpd.GeoDataFrame:
    # Tract 3 has a polygon, tract 4 does not appear in the ACS table
    cells = [box(-118.30 + i * 0.01, 34.00, -118.29 + i * 0.01, 34.01) for i in range(4)]
    return gpd.GeoDataFrame(
        {"GEOID": ["06037000100", "06037000200", "06037000300", "06037009900"]},
        geometry=cells,
        crs=4269,
    )


def _zipped_shapefile(folder, gdf) -> bytes:
    """Write ``gdf`` as a shapefile and return it zipped, as the boundary server does."""
    folder.mkdir()
    gdf.to_file(folder / "cb_tract.shp")
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for part in folder.glob("cb_tract.*"):
            zf.write(part, arcname=part.name)
    return buf.getvalue()


def _serve(acs_rows, boundary_bytes):
    def fake_get(url, params=None, **kwargs):
        if "census.gov/geo" in url:
            return FakeResponse(content=boundary_bytes)
        return FakeResponse(acs_rows)
    return fake_get


# ---------------------------------------------------------------------------
# Synthetic samples
# ---------------------------------------------------------------------------


class TestSyntheticSample:
    def test_shape_and_columns(self):
        df = generate_synthetic_sample(50, seed=1)
        assert list(df.columns) == ["x", "y", "z"]
        assert len(df) == 50
        assert all(df[c].dtype == np.float64 for c in df.columns)

    def test_same_seed_is_bit_identical(self):
        a = generate_synthetic_sample(50, seed=1)
        b = generate_synthetic_sample(50, seed=1)
        pd.testing.assert_frame_equal(a, b)
        assert np.array_equal(a.to_numpy(), b.to_numpy())

    def test_different_seed_differs(self):
        a = generate_synthetic_sample(50, seed=1)
        b = generate_synthetic_sample(50, seed=2)
        assert not a.equals(b)

    def test_columns_are_not_copies_of_each_other(self):
        df = generate_synthetic_sample(200, seed=7)
        assert not np.allclose(df["x"], df["y"])
        assert not np.allclose(df["y"], df["z"])

    @pytest.mark.parametrize("count", [0, -3, 2.5, True, "10"])
    def test_invalid_count(self, count):
        with pytest.raises(ValueError):
            generate_synthetic_sample(count, seed=1)


class TestCategoricalSample:
    def test_labels_come_from_alphabet(self):
        df = generate_categorical_sample(50, seed=123, alphabet_size=5)
        assert list(df.columns) == ["category", "value"]
        assert set(df["category"]) <= set("abcde")
        assert len(df) == 50

    def test_deterministic(self):
        a = generate_categorical_sample(50, seed=123, alphabet_size=5)
        b = generate_categorical_sample(50, seed=123, alphabet_size=5)
        pd.testing.assert_frame_equal(a, b)

    def test_single_letter_alphabet(self):
        df = generate_categorical_sample(10, seed=0, alphabet_size=1)
        assert set(df["category"]) == {"a"}

    @pytest.mark.parametrize("size", [0, 27])
    def test_invalid_alphabet_size(self, size):
        with pytest.raises(ValueError):
            generate_categorical_sample(10, seed=0, alphabet_size=size)


class TestRippleSurface:
    def test_complete_grid(self):
        df = generate_ripple_surface(40)
        assert len(df) == 40 * 40
        assert df["x"].nunique() == 40
        assert df["y"].nunique() == 40
        assert np.isfinite(df["z"]).all()

    def test_peak_at_origin_region(self):
        df = generate_ripple_surface(41)
        centre = df[(df["x"].abs() < 1e-9) & (df["y"].abs() < 1e-9)]
        assert centre["z"].iloc[0] == pytest.approx(1.0)

    def test_too_coarse(self):
        with pytest.raises(ValueError):
            generate_ripple_surface(1)


# ---------------------------------------------------------------------------
# Census fetch
# ---------------------------------------------------------------------------


def test_parse_number_blanks_sentinels():
    out = parse_number(pd.Series(["12", "-666666666", "x", "0"]))
    assert out.iloc[0] == 12
    assert np.isnan(out.iloc[1])
    assert np.isnan(out.iloc[2])
    assert out.iloc[3] == 0


@pytest.mark.parametrize(
    "code, expected",
    [("06037", ("06", "037")), (("06", "037"), ("06", "037")), ("06", ("06", None))],
)
def test_split_region(code, expected):
    assert fetch_data._split_region(code) == expected


@pytest.mark.parametrize("code", ["6", "CA037", "0637"])
def test_split_region_rejects_bad_codes(code):
    with pytest.raises(ValueError):
        fetch_data._split_region(code)


class TestFetchGeoTracts:
    def test_unreachable_endpoint_raises_network_error(self, monkeypatch):
        def refuse(*_args, **_kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(fetch_data.requests, "get", refuse)
        monkeypatch.setattr(fetch_data, "_fetch_boundaries",
                            lambda *a, **k: pytest.fail("boundaries fetched after failure"))
        with pytest.raises(NetworkError):
            fetch_geo_tracts(region_code="06037")

    def test_closed_local_port_raises_network_error(self, monkeypatch):
        monkeypatch.setattr(fetch_data, "ACS_URL_TEMPLATE", "http://127.0.0.1:9/data/{year}/acs/acs5")
        with pytest.raises(NetworkError):
            fetch_geo_tracts(region_code="06037")

    def test_http_error_status(self, monkeypatch):
        monkeypatch.setattr(fetch_data.requests, "get",
                            lambda *a, **k: FakeResponse(status=503))
        with pytest.raises(NetworkError):
            fetch_geo_tracts(region_code="06037")

    def test_non_json_payload(self, monkeypatch):
        monkeypatch.setattr(fetch_data.requests, "get",
                            lambda *a, **k: FakeResponse(text="<html>maintenance</html>"))
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")

    def test_missing_estimate_column(self, monkeypatch):
        rows = [["NAME", "state", "county", "tract"], ["T1", "06", "037", "000100"]]
        monkeypatch.setattr(fetch_data.requests, "get", lambda *a, **k: FakeResponse(rows))
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")

    def test_ragged_rows(self, monkeypatch):
        rows = [["NAME", "B01003_001E"], ["T1", "1", "extra"]]
        monkeypatch.setattr(fetch_data.requests, "get", lambda *a, **k: FakeResponse(rows))
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")

    def test_unknown_geography(self):
        with pytest.raises(ValueError):
            fetch_geo_tracts(geography="planet")

    def test_joins_renames_and_reprojects(self, monkeypatch):
        calls = []

        def fake_get(url, params=None, **kwargs):
            calls.append((url, params))
            return FakeResponse(ACS_ROWS)

        monkeypatch.setattr(fetch_data.requests, "get", fake_get)
        monkeypatch.setattr(fetch_data, "_fetch_boundaries", _boundaries)

        gdf = fetch_geo_tracts("tract", "B01003_001", 2020, "06037", 26911)

        assert list(gdf.columns) == ["GEOID", "NAME", "population", "geometry"]
        assert gdf.crs.to_epsg() == 26911
        # Inner join: the boundary-only tract is dropped
        assert list(gdf["GEOID"]) == ["06037000100", "06037000200", "06037000300"]
        assert gdf["population"].iloc[0] == 1200
        assert np.isnan(gdf["population"].iloc[2])
        # Planar metres, not degrees
        assert gdf.total_bounds[0] > 1_000

        url, params = calls[0]
        assert url == "https://api.census.gov/data/2020/acs/acs5"
        assert ("for", "tract:*") in params
        assert ("in", "state:06") in params
        assert ("in", "county:037") in params

    def test_no_matching_geometries(self, monkeypatch):
        monkeypatch.setattr(fetch_data.requests, "get", lambda *a, **k: FakeResponse(ACS_ROWS))
        monkeypatch.setattr(
            fetch_data, "_fetch_boundaries",
            lambda *a, **k: gpd.GeoDataFrame({"GEOID": ["99"]}, geometry=[box(0, 0, 1, 1)], crs=4269),
        )
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")

    def test_boundary_download_failure(self, monkeypatch):
        def fake_get(url, params=None, **kwargs):
            if "census.gov/geo" in url:
                raise requests.Timeout("read timed out")
            return FakeResponse(ACS_ROWS)

        monkeypatch.setattr(fetch_data.requests, "get", fake_get)
        with pytest.raises(NetworkError):
            fetch_geo_tracts(region_code="06037")


class TestBoundaryFile:
    """The downloaded ZIP is read for real; only the HTTP layer is stubbed."""

    def test_geoid20_column_is_renamed(self, monkeypatch, tmp_path):
        shapes = _boundaries().rename(columns={"GEOID": "GEOID20"})
        monkeypatch.setattr(fetch_data.requests, "get",
                            _serve(ACS_ROWS, _zipped_shapefile(tmp_path / "shp", shapes)))

        raw = fetch_data._fetch_boundaries("tract", 2020, "06")
        assert list(raw.columns) == ["GEOID", "geometry"]
        assert raw.crs.to_epsg() == 4269

        gdf = fetch_geo_tracts("tract", "B01003_001", 2020, "06037", 26911)
        assert list(gdf["GEOID"]) == ["06037000100", "06037000200", "06037000300"]
        assert gdf.crs.to_epsg() == 26911

    def test_garbage_payload(self, monkeypatch):
        monkeypatch.setattr(fetch_data.requests, "get", _serve(ACS_ROWS, b"not a zip"))
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")

    def test_shapefile_without_crs(self, monkeypatch, tmp_path):
        shapes = gpd.GeoDataFrame({"GEOID": ["06037000100"]}, geometry=[box(0, 0, 1, 1)])
        monkeypatch.setattr(fetch_data.requests, "get",
                            _serve(ACS_ROWS, _zipped_shapefile(tmp_path / "shp", shapes)))
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")

    def test_shapefile_without_geoid(self, monkeypatch, tmp_path):
        shapes = _boundaries().rename(columns={"GEOID": "TRACTCE"})
        monkeypatch.setattr(fetch_data.requests, "get",
                            _serve(ACS_ROWS, _zipped_shapefile(tmp_path / "shp", shapes)))
        with pytest.raises(DataFormatError):
            fetch_geo_tracts(region_code="06037")
