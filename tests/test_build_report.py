from __future__ import annotations

import pytest

import build_report
from fetch_data import NetworkError


@pytest.fixture
def stub_fetch(monkeypatch, tracts):
    calls = []

    def fake_fetch(*args, **kwargs):
        calls.append(args)
        return tracts

    monkeypatch.setattr(build_report, "fetch_geo_tracts", fake_fetch)
    monkeypatch.setattr(build_report, "HEX_POINTS", 500)
    return calls


class TestAssembleReport:
    def test_writes_document_and_figures(self, settings, stub_fetch):
        out = build_report.assemble_report(settings)

        assert out == settings.output_dir / build_report.REPORT_NAME
        text = out.read_text(encoding="utf-8")
        images = sorted(p.name for p in settings.images_dir.glob("*.png"))
        assert images == sorted([
            "palette_gallery.png",
            "ripple_contour.png",
            "hexbin.png",
            "palette_comparison.png",
            "category_bars.png",
            "tracts_population.png",
            "tracts_population_reversed.png",
        ])
        for name in images:
            assert f"](../images/{name})" in text

    def test_sections_in_fixed_order(self, settings, stub_fetch):
        text = build_report.assemble_report(settings).read_text(encoding="utf-8")
        headings = [line for line in text.splitlines() if line.startswith("#")]
        assert headings == [
            "# Introduction to the viridis colour maps",
            "## The colour scales",
            "## A damped ripple",
            "## Hexagonal binning",
            "## Comparing palettes",
            "## Discrete scales",
            "## A census choropleth",
            "## Session info",
        ]

    def test_census_data_fetched_once(self, settings, stub_fetch):
        build_report.assemble_report(settings)
        assert len(stub_fetch) == 1
        assert stub_fetch[0] == (
            build_report.CENSUS_GEOGRAPHY,
            build_report.CENSUS_VARIABLE,
            build_report.CENSUS_YEAR,
            build_report.CENSUS_REGION,
            build_report.TARGET_CRS,
        )

    def test_prints_session_info_last(self, settings, stub_fetch, capsys):
        build_report.assemble_report(settings)
        lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
        assert any(line.strip().startswith("matplotlib") for line in lines[-len(build_report.SESSION_PACKAGES):])

    def test_fetch_failure_leaves_no_document(self, settings, monkeypatch):
        def unreachable(*_args, **_kwargs):
            raise NetworkError("connection refused")

        monkeypatch.setattr(build_report, "fetch_geo_tracts", unreachable)
        monkeypatch.setattr(build_report, "HEX_POINTS", 500)
        with pytest.raises(NetworkError):
            build_report.assemble_report(settings)
        assert not (settings.output_dir / build_report.REPORT_NAME).exists()


def test_main_exits_on_pipeline_error(monkeypatch, capsys):
    def boom(*_args, **_kwargs):
        raise NetworkError("api.census.gov unreachable")

    monkeypatch.setattr(build_report, "assemble_report", boom)
    with pytest.raises(SystemExit) as exc:
        build_report.main()
    assert exc.value.code == 1
    assert "[error] NetworkError" in capsys.readouterr().out


def test_session_info_lists_packages():
    info = build_report.session_info()
    assert info[0].startswith("Python")
    assert info[1].startswith("Platform")
    assert len(info) == 2 + len(build_report.SESSION_PACKAGES)
