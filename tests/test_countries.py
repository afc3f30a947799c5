"""Tests for country selection and names."""

import logging

import pytest

from tilepub.services.countries import CountryService, load_country_names


class TestCountryService:
    """Tests for CountryService."""

    @pytest.mark.asyncio
    async def test_empty_selects_all_catalog_countries(self, catalog):
        service = CountryService(catalog)
        assert await service.get_countries_to_process([]) == ["YY", "ZZ"]

    @pytest.mark.asyncio
    async def test_all_keyword(self, catalog):
        service = CountryService(catalog)
        assert await service.get_countries_to_process(["ZZ", "ALL"]) == ["YY", "ZZ"]

    @pytest.mark.asyncio
    async def test_unknown_codes_are_dropped(self, catalog, caplog):
        caplog.set_level(logging.INFO)
        service = CountryService(catalog)

        countries = await service.get_countries_to_process(["zz", "XX", "ZZ"])

        assert countries == ["ZZ"]
        assert "not found in catalog" in caplog.text

    def test_country_names(self, catalog):
        service = CountryService(catalog, {"ZZ": "Zedland"})

        assert service.get_country_name("zz") == "Zedland"
        assert service.get_country_name("YY") is None
        assert service.describe("ZZ") == "ZZ (Zedland)"
        assert service.describe("YY") == "YY"


class TestLoadCountryNames:
    """Tests for load_country_names."""

    def test_bundled_names(self):
        names = load_country_names()

        assert names["FR"] == "France"
        # YAML 1.1 would read a bare NO as false
        assert names["NO"] == "Norway"
        assert len(names) > 200

    def test_custom_file(self, tmp_path):
        path = tmp_path / "names.yaml"
        path.write_text('countries:\n  "zz": "Zedland"\n')

        assert load_country_names(str(path)) == {"ZZ": "Zedland"}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_country_names(str(tmp_path / "missing.yaml"))
