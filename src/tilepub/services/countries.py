"""Country selection and display names."""

import logging
from importlib import resources
from pathlib import Path
from typing import Iterable, Mapping

import yaml

from tilepub.catalog.client import CatalogClient

logger = logging.getLogger(__name__)


def load_country_names(path: str | None = None) -> dict[str, str]:
    """Load the country code -> name lookup.

    Args:
        path: YAML file with a top-level "countries" mapping. If None or
            empty, the bundled countries.yaml is used.

    Raises:
        FileNotFoundError: If an explicit path doesn't exist
        yaml.YAMLError: If the file is malformed
    """
    if path:
        names_path = Path(path)
        if not names_path.exists():
            raise FileNotFoundError(f"Country names file not found: {path}")
        logger.info(f"Loading country names from: {path}")
        text = names_path.read_text(encoding="utf-8")
    else:
        text = resources.files("tilepub.data").joinpath("countries.yaml").read_text(encoding="utf-8")

    data = yaml.safe_load(text) or {}
    return {str(code).upper(): str(name) for code, name in data.get("countries", {}).items()}


class CountryService:
    """Decides which countries a run covers."""

    def __init__(self, catalog: CatalogClient, names: Mapping[str, str] | None = None):
        self.catalog = catalog
        self.names = dict(names or {})

    async def get_countries_to_process(self, target_countries: Iterable[str]) -> list[str]:
        """Resolve requested country codes against the catalog.

        An empty list or one containing "ALL" selects every country the
        catalog has regions for. Codes the catalog doesn't know are
        logged and dropped.
        """
        targets = [c.strip().upper() for c in target_countries if c.strip()]
        all_countries = await self.catalog.get_all_countries()

        if not targets or "ALL" in targets:
            return all_countries

        known = set(all_countries)
        valid = [c for c in dict.fromkeys(targets) if c in known]
        invalid = [c for c in targets if c not in known]
        if invalid:
            logger.info(
                "Some requested countries not found in catalog",
                extra={"countries": invalid},
            )
        return valid

    def get_country_name(self, country_code: str) -> str | None:
        return self.names.get(country_code.upper())

    def describe(self, country_code: str) -> str:
        name = self.get_country_name(country_code)
        return f"{country_code} ({name})" if name else country_code
