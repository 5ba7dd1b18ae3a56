"""OSC Annual Financial Report data for New York counties.

Input is the Comptroller's long-format CSV export: one row per
(calendar year, municipality, account code) with an AMOUNT. Each account
code becomes an OSC metric carrying its AFR classification; each county-year
gets one `osc_county_afr` document.
"""

import logging
from pathlib import Path

import pandas as pd
from sqlalchemy import select

from ..accounting import fund_code_for
from ..models import Entity
from ..schemas import AccountType, DataSource, DisplayFormat, EntityKind
from .base import BulkImporter, ImportStats, slugify

logger = logging.getLogger(__name__)

OSC_SOURCE_URL = "https://www.osc.ny.gov/local-government/data"

REQUIRED_COLUMNS = [
    "CALENDAR_YEAR",
    "MUNICIPAL_CODE",
    "ENTITY_NAME",
    "ACCOUNT_CODE",
    "ACCOUNT_CODE_NARRATIVE",
    "FINANCIAL_STATEMENT",
    "LEVEL_1_CATEGORY",
    "LEVEL_2_CATEGORY",
    "AMOUNT",
]

CLASSIFICATION_COLUMNS = [
    "ENTITY_NAME",
    "ACCOUNT_CODE_NARRATIVE",
    "FINANCIAL_STATEMENT",
    "LEVEL_1_CATEGORY",
    "LEVEL_2_CATEGORY",
]


def normalize_county_name(osc_name: str) -> str:
    """'County of St. Lawrence' -> 'St. Lawrence County'."""
    name = " ".join(osc_name.split())
    if name.lower().startswith("county of "):
        return f"{name[len('county of '):]} County"
    return name


def account_type_for(financial_statement: str | None) -> AccountType | None:
    """AFR statement name -> account type."""
    statement = (financial_statement or "").lower()
    if "revenue" in statement:
        return AccountType.REVENUE
    if "expenditure" in statement:
        return AccountType.EXPENDITURE
    if "balance" in statement:
        return AccountType.BALANCE_SHEET
    return None


def metric_key_for(account_code: str) -> str:
    return f"osc_{account_code.strip().lower()}"


def _text(value) -> str | None:
    if value is None or pd.isna(value):
        return None
    text = " ".join(str(value).split())
    return text or None


def read_county_csv(path: Path) -> pd.DataFrame:
    """Load the export with codes kept as strings and amounts coerced to numbers."""
    frame = pd.read_csv(path, dtype={"MUNICIPAL_CODE": str, "ACCOUNT_CODE": str})
    missing = [col for col in REQUIRED_COLUMNS if col not in frame.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")
    frame["AMOUNT"] = pd.to_numeric(frame["AMOUNT"], errors="coerce")
    frame["CALENDAR_YEAR"] = pd.to_numeric(frame["CALENDAR_YEAR"], errors="coerce")
    return frame


class OscCountyImporter(BulkImporter):
    """Creates county entities and imports their AFR amounts."""

    source_name = "osc_county_import"
    data_source = DataSource.OSC
    doc_type = "osc_county_afr"

    def document_attributes(self, entity: Entity, fiscal_year: int) -> dict:
        return {
            "title": f"{entity.name} OSC Annual Financial Report {fiscal_year}",
            "source_url": OSC_SOURCE_URL,
        }

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def find_or_create_county(self, municipal_code: str, osc_name: str) -> Entity | None:
        entity = self.find_entity("osc_municipal_code", municipal_code, EntityKind.COUNTY)
        if entity is not None:
            return entity

        name = normalize_county_name(osc_name)
        entity = self.session.scalars(
            select(Entity).where(Entity.name == name, Entity.kind == EntityKind.COUNTY)
        ).first()
        if entity is not None:
            if not entity.osc_municipal_code and not self.dry_run:
                entity.osc_municipal_code = municipal_code
        elif self.dry_run:
            logger.info(f"Would create county {name}")
            return None
        else:
            entity, created = self.insert_or_fetch_entity(
                {"name": name, "state": "NY", "kind": EntityKind.COUNTY},
                {"slug": slugify(name), "osc_municipal_code": municipal_code},
            )
            if created:
                self.stats.entities_created += 1
                logger.info(f"Created county {name} ({municipal_code})")

        self._entity_cache[("osc_municipal_code", municipal_code, EntityKind.COUNTY)] = entity
        return entity

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def import_file(self, path: Path) -> ImportStats:
        frame = read_county_csv(Path(path))
        self.stats.rows_processed += len(frame)

        valid = frame.dropna(subset=["AMOUNT", "CALENDAR_YEAR", "MUNICIPAL_CODE", "ACCOUNT_CODE"])
        self.stats.rows_skipped += len(frame) - len(valid)
        return self.import_frame(valid)

    def import_frame(self, frame: pd.DataFrame) -> ImportStats:
        """Sum amounts per (year, county, account code) and upsert them."""
        grouped = (
            frame.groupby(["CALENDAR_YEAR", "MUNICIPAL_CODE", "ACCOUNT_CODE"], as_index=False)
            .agg({"AMOUNT": "sum", **{col: "first" for col in CLASSIFICATION_COLUMNS}})
        )

        for row in grouped.itertuples(index=False):
            entity = self.find_or_create_county(row.MUNICIPAL_CODE, row.ENTITY_NAME)
            if entity is None:
                if not self.dry_run:
                    self.stats.entities_not_found += 1
                continue

            year = int(row.CALENDAR_YEAR)
            account_code = row.ACCOUNT_CODE.strip().upper()
            self.find_or_create_metric(
                metric_key_for(account_code),
                label=_text(row.ACCOUNT_CODE_NARRATIVE) or account_code,
                unit="USD",
                display_format=DisplayFormat.CURRENCY,
                account_code=account_code,
                fund_code=fund_code_for(account_code),
                account_type=account_type_for(_text(row.FINANCIAL_STATEMENT)),
                level_1_category=_text(row.LEVEL_1_CATEGORY),
                level_2_category=_text(row.LEVEL_2_CATEGORY),
            )
            document = self.find_or_create_document(entity, year)
            self.upsert_observation(
                entity,
                metric_key_for(account_code),
                document,
                year,
                row.AMOUNT,
                page_reference=f"Account {account_code}",
            )

        logger.info(
            f"OSC counties: {self.stats.observations_created} created, "
            f"{self.stats.observations_updated} updated, {self.stats.observations_unchanged} unchanged"
        )
        return self.stats
