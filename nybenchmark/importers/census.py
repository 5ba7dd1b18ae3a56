"""US Census ACS 5-year estimates for New York places and counties.

Fetches a fixed set of ACS variables from the Census Data API and records one
observation per (entity, variable, year). Places map to cities and counties
to counties through Entity.fips_code.

Suppressed or unavailable estimates come back as large negative sentinels
(e.g. -666666666) and are skipped, never stored as zero.
"""

import logging
import os
from decimal import Decimal, InvalidOperation

import httpx
from dotenv import load_dotenv

from ..models import Entity
from ..schemas import DataSource, DisplayFormat, EntityKind
from .base import BulkImporter, ImportStats

load_dotenv()

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

CENSUS_API_BASE = "https://api.census.gov/data/{year}/acs/acs5"
NY_STATE_FIPS = "36"

# Census geography -> entity kind
GEOGRAPHIES = {
    "place": EntityKind.CITY,
    "county": EntityKind.COUNTY,
}

# variable -> (label, display_format, unit, description)
ACS_VARIABLES = {
    "B01003_001E": ("Total Population", DisplayFormat.INTEGER, "people", "Total population"),
    "B19013_001E": (
        "Median Household Income", DisplayFormat.CURRENCY_ROUNDED, "USD",
        "Median household income in the past 12 months (inflation-adjusted dollars)",
    ),
    "B19301_001E": (
        "Per Capita Income", DisplayFormat.CURRENCY_ROUNDED, "USD",
        "Per capita income in the past 12 months (inflation-adjusted dollars)",
    ),
    "B17001_002E": (
        "Population Below Poverty Level", DisplayFormat.INTEGER, "people",
        "Population for whom poverty status is determined, income below poverty level",
    ),
    "B25077_001E": ("Median Home Value", DisplayFormat.CURRENCY_ROUNDED, "USD", "Median value, owner-occupied housing units"),
    "B25064_001E": ("Median Gross Rent", DisplayFormat.CURRENCY_ROUNDED, "USD", "Median gross rent, renter-occupied units"),
}

SUPPRESSED_VALUES = {"-666666666", "-999999999", "-888888888", "-222222222", "-555555555"}


def metric_key_for(variable: str) -> str:
    """'B01003_001E' -> 'census_b01003_001e'."""
    return f"census_{variable.lower()}"


def variable_for(metric_key: str) -> str:
    return metric_key.removeprefix("census_").upper()


def suppressed_value(raw) -> bool:
    """True for null, blank and the ACS annotation sentinels."""
    if raw is None:
        return True
    text = str(raw).strip()
    return text == "" or text in SUPPRESSED_VALUES


class CensusImporter(BulkImporter):
    """Imports ACS 5-year estimates. Pass `client` to reuse or stub the HTTP client."""

    source_name = "census_import"
    data_source = DataSource.CENSUS
    doc_type = "us_census_acs5"

    def __init__(
        self,
        session,
        dry_run: bool = False,
        api_key: str | None = None,
        client: httpx.Client | None = None,
        variables: list[str] | None = None,
    ):
        super().__init__(session, dry_run)
        self.api_key = api_key if api_key is not None else os.getenv("CENSUS_API_KEY")
        self.client = client or httpx.Client(timeout=60.0)
        self.variables = variables or list(ACS_VARIABLES)

    def validate_api_key(self) -> None:
        if not self.api_key:
            raise RuntimeError(
                "CENSUS_API_KEY is not set. Request a key at https://api.census.gov/data/key_signup.html"
            )

    def find_entity_by_fips(self, fips: str, kind: EntityKind = EntityKind.CITY) -> Entity | None:
        return self.find_entity("fips_code", fips, kind)

    def metric_attributes(self, key: str) -> dict:
        variable = variable_for(key)
        label, display_format, unit, description = ACS_VARIABLES.get(
            variable, (variable, DisplayFormat.DECIMAL, None, None)
        )
        return {
            "label": label,
            "description": description,
            "unit": unit,
            "display_format": display_format,
            "data_source": self.data_source,
        }

    def document_attributes(self, entity: Entity, fiscal_year: int) -> dict:
        return {
            "title": f"{entity.name} Census ACS 5-Year Estimates {fiscal_year}",
            "source_url": CENSUS_API_BASE.format(year=fiscal_year),
        }

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def fetch(self, year: int, geography: str) -> list[dict]:
        """One dict per place or county, keyed by the response header row."""
        params = {
            "get": ",".join(["NAME", *self.variables]),
            "for": f"{geography}:*",
            "in": f"state:{NY_STATE_FIPS}",
            "key": self.api_key,
        }
        response = self.client.get(CENSUS_API_BASE.format(year=year), params=params)
        response.raise_for_status()

        header, *rows = response.json()
        logger.info(f"Census {year} {geography}: {len(rows)} rows")
        return [dict(zip(header, row)) for row in rows]

    def close(self) -> None:
        self.client.close()

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def import_year(self, year: int) -> ImportStats:
        """Import every configured variable for NY places and counties."""
        self.validate_api_key()

        for geography, kind in GEOGRAPHIES.items():
            for row in self.fetch(year, geography):
                self.stats.rows_processed += 1
                entity = self.find_entity_by_fips(row.get(geography), kind)
                if entity is None:
                    self.stats.entities_not_found += 1
                    continue
                self._import_row(entity, year, row)

        logger.info(
            f"Census {year}: {self.stats.observations_created} created, "
            f"{self.stats.observations_updated} updated, {self.stats.observations_unchanged} unchanged"
        )
        return self.stats

    def _import_row(self, entity: Entity, year: int, row: dict) -> None:
        document = self.find_or_create_document(entity, year)
        for variable in self.variables:
            raw = row.get(variable)
            if suppressed_value(raw):
                self.stats.rows_skipped += 1
                continue
            try:
                value = Decimal(str(raw).strip())
            except InvalidOperation:
                self.errors.append(f"{entity.name} {variable}: unparseable value {raw!r}")
                continue
            self.upsert_observation(
                entity,
                metric_key_for(variable),
                document,
                year,
                value,
                page_reference=f"ACS 5-Year {year}, {variable}",
            )
