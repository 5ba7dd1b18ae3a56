"""OSC level-two financial data for New York school districts.

Input is one wide CSV per fiscal year, `leveltwoYY.csv`: a row per district,
a few metadata columns, then one column per financial line item. Every
non-metadata column becomes a `school_<snake_case>` metric. Account type and
category are inferred from the column name since the export carries neither.

After a year is imported, the comparison metrics (per-pupil spending,
overhead and state aid shares) are derived per district from that year's
values and stored as `derived` metrics with their formula.
"""

import logging
import re
from decimal import Decimal, InvalidOperation
from pathlib import Path

import pandas as pd
from sqlalchemy import select

from ..models import Entity
from ..schemas import AccountType, DataSource, DisplayFormat, EntityKind, SchoolLegalType
from .base import BulkImporter, ImportStats, slugify

logger = logging.getLogger(__name__)

OSC_SOURCE_URL = "https://www.osc.ny.gov/local-government/data"

METADATA_COLUMNS = [
    "Muni Code",
    "Entity Name",
    "County",
    "Class Description",
    "Fiscal Year End Date",
    "Months in Fiscal Period",
]

ENROLLMENT_KEY = "school_enrollment"

# Big Five school districts are fiscally dependent on their city.
# New York City is not in the OSC data.
BIG_FIVE_CITIES = {
    "Buffalo City School District": "Buffalo",
    "Rochester City School District": "Rochester",
    "Syracuse City School District": "Syracuse",
    "Yonkers City School District": "Yonkers",
}
BIG_FIVE_NAMES = frozenset(BIG_FIVE_CITIES)

CENTRAL_CLASSES = {"central", "independent superintendent", "central high"}

# key -> (label, display_format, numerator key, denominator key, scale)
DERIVED_METRICS = {
    "school_per_pupil_spending": (
        "Per-Pupil Spending", DisplayFormat.CURRENCY, "school_total_expenditures", ENROLLMENT_KEY, 1,
    ),
    "school_per_pupil_instruction": (
        "Per-Pupil Instruction", DisplayFormat.CURRENCY, "school_instruction", ENROLLMENT_KEY, 1,
    ),
    "school_per_pupil_administration": (
        "Per-Pupil Administration", DisplayFormat.CURRENCY, "school_general_support", ENROLLMENT_KEY, 1,
    ),
    "school_admin_overhead_pct": (
        "Administrative Overhead %", DisplayFormat.PERCENTAGE,
        "school_general_support", "school_total_expenditures", 100,
    ),
    "school_state_aid_dependency_pct": (
        "State Aid Dependency %", DisplayFormat.PERCENTAGE,
        "school_state_aid_education", "school_total_revenues", 100,
    ),
}

# Checked in order; first match wins
BALANCE_SHEET_KEYWORDS = ("debt outstanding", "full value", "fund balance", "cash", "assets", "liabilities")
REVENUE_KEYWORDS = (
    "tax", "fees", "interest and earnings", "aid", "sale of", "transfers", "other sources",
    "revenue", "charges", "rental", "fines", "gifts", "refund", "proceeds",
)

# (keywords, level-1 category)
CATEGORY_RULES = (
    (("federal aid",), "Federal Aid"),
    (("state aid",), "State Aid"),
    (("debt principal", "interest on debt", "bond anticipation", "debt service"), "Debt Service"),
    (("retirement", "insurance", "social security", "benefits", "workers", "unemployment"), "Employee Benefits"),
    (("instruction", "pupil", "student", "education - transportation", "transportation"), "Education"),
    (("general support", "administration", "board of education", "central services"), "General Support"),
    (("tax",), "Taxes"),
    (("fees", "charges"), "Charges for Services"),
    (("interest and earnings", "rental"), "Use of Money and Property"),
    (("sale of", "transfers", "other sources"), "Other Sources"),
)


# =============================================================================
# Column and value helpers
# =============================================================================


def extract_year_from_filename(filename: str) -> int:
    """'leveltwo24.csv' -> 2024."""
    match = re.search(r"leveltwo(\d{2})", Path(filename).name, re.IGNORECASE)
    if not match:
        raise ValueError(f"Cannot find a year in file name: {filename}")
    return 2000 + int(match.group(1))


def metric_key_for(column: str) -> str:
    """'State Aid - Education' -> 'school_state_aid_education'."""
    snake = re.sub(r"[^a-z0-9]+", "_", column.lower()).strip("_")
    return f"school_{snake}"


def parse_amount(raw) -> Decimal | None:
    if raw is None:
        return None
    text = str(raw).strip().replace(",", "").replace("$", "")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def should_skip_value(raw) -> bool:
    """Blank, unparseable and zero amounts are not recorded."""
    amount = parse_amount(raw)
    return amount is None or amount == 0


def is_total_column(column: str) -> bool:
    return column.strip().lower().startswith("total")


def infer_account_type(column: str) -> AccountType | None:
    """Statement a level-two column belongs to. Enrollment is not financial."""
    name = column.lower()
    if "enrollment" in name:
        return None
    if any(keyword in name for keyword in BALANCE_SHEET_KEYWORDS):
        return AccountType.BALANCE_SHEET
    if name.startswith("total expenditures"):
        return AccountType.EXPENDITURE
    if any(keyword in name for keyword in REVENUE_KEYWORDS):
        return AccountType.REVENUE
    return AccountType.EXPENDITURE


def infer_level_1_category(column: str) -> str | None:
    name = column.lower()
    if "enrollment" in name or is_total_column(column):
        return None
    for keywords, category in CATEGORY_RULES:
        if any(keyword in name for keyword in keywords):
            return category
    return None


def map_legal_type(class_description: str | None, entity_name: str) -> SchoolLegalType | None:
    """OSC class description -> legal type. Unknown classes map to None."""
    description = (class_description or "").strip().lower()
    if description == "city public school":
        if entity_name in BIG_FIVE_NAMES:
            return SchoolLegalType.BIG_FIVE
        return SchoolLegalType.SMALL_CITY
    if description in CENTRAL_CLASSES:
        return SchoolLegalType.CENTRAL
    if description == "union free":
        return SchoolLegalType.UNION_FREE
    if description == "common":
        return SchoolLegalType.COMMON
    return None


def derive_metrics(values: dict[str, Decimal]) -> dict[str, Decimal]:
    """Comparison metrics for one district-year. Missing inputs or a zero denominator skip that metric."""
    derived = {}
    for key, (_, _, numerator_key, denominator_key, scale) in DERIVED_METRICS.items():
        numerator = values.get(numerator_key)
        denominator = values.get(denominator_key)
        if numerator is None or not denominator:
            continue
        derived[key] = numerator / denominator * scale
    return derived


def formula_for(key: str) -> str:
    _, _, numerator_key, denominator_key, scale = DERIVED_METRICS[key]
    formula = f"{numerator_key} / {denominator_key}"
    return f"{formula} * {scale}" if scale != 1 else formula


# =============================================================================
# Importer
# =============================================================================


class OscSchoolImporter(BulkImporter):
    """Creates school district entities and imports one level-two CSV per call."""

    source_name = "osc_school_import"
    data_source = DataSource.OSC
    doc_type = "osc_school_afr"

    def document_attributes(self, entity: Entity, fiscal_year: int) -> dict:
        return {
            "title": f"{entity.name} OSC School District Financial Data {fiscal_year}",
            "source_url": OSC_SOURCE_URL,
        }

    def metric_attributes(self, key: str) -> dict:
        if key in DERIVED_METRICS:
            label, display_format, *_ = DERIVED_METRICS[key]
            return {
                "label": label,
                "display_format": display_format,
                "unit": "%" if display_format == DisplayFormat.PERCENTAGE else "USD",
                "data_source": DataSource.DERIVED,
                "formula": formula_for(key),
            }
        return super().metric_attributes(key)

    def column_metric_attributes(self, column: str) -> dict:
        """Classification for a level-two column. Totals carry no account type so sums don't double count."""
        if metric_key_for(column) == ENROLLMENT_KEY:
            return {"label": "Enrollment", "display_format": DisplayFormat.INTEGER, "unit": "students"}
        return {
            "label": column.strip(),
            "display_format": DisplayFormat.CURRENCY,
            "unit": "USD",
            "account_type": None if is_total_column(column) else infer_account_type(column),
            "level_1_category": infer_level_1_category(column),
        }

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def find_or_create_district(self, municipal_code: str, name: str, class_description: str) -> Entity | None:
        entity = self.find_entity("osc_municipal_code", municipal_code, EntityKind.SCHOOL_DISTRICT)
        if entity is not None:
            return entity

        legal_type = map_legal_type(class_description, name)
        if legal_type is None:
            self.errors.append(f"{name} ({municipal_code}): unknown class description {class_description!r}")
            return None
        if self.dry_run:
            logger.info(f"Would create school district {name}")
            return None

        entity, created = self.insert_or_fetch_entity(
            {"name": name, "state": "NY", "kind": EntityKind.SCHOOL_DISTRICT},
            {
                "slug": slugify(name),
                "osc_municipal_code": municipal_code,
                "school_legal_type": legal_type,
                "parent_id": self._parent_city_id(name),
            },
        )
        if created:
            self.stats.entities_created += 1
            logger.info(f"Created school district {name} ({legal_type.value})")
        self._entity_cache[("osc_municipal_code", municipal_code, EntityKind.SCHOOL_DISTRICT)] = entity
        return entity

    def _parent_city_id(self, district_name: str):
        city_name = BIG_FIVE_CITIES.get(district_name)
        if city_name is None:
            return None
        city = self.session.scalars(
            select(Entity).where(Entity.name == city_name, Entity.kind == EntityKind.CITY)
        ).first()
        if city is None:
            logger.warning(f"Parent city {city_name} not found for {district_name}")
            return None
        return city.id

    # -------------------------------------------------------------------------
    # Import
    # -------------------------------------------------------------------------

    def import_file(self, path: Path) -> ImportStats:
        path = Path(path)
        year = extract_year_from_filename(path.name)
        frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        return self.import_frame(frame, year, page_reference=path.name)

    def import_frame(self, frame: pd.DataFrame, year: int, page_reference: str = "OSC level-two data") -> ImportStats:
        financial_columns = [col for col in frame.columns if col not in METADATA_COLUMNS]

        for record in frame.to_dict(orient="records"):
            self.stats.rows_processed += 1
            municipal_code = str(record.get("Muni Code", "")).strip()
            name = " ".join(str(record.get("Entity Name", "")).split())
            if not municipal_code or not name:
                self.stats.rows_skipped += 1
                continue

            entity = self.find_or_create_district(municipal_code, name, record.get("Class Description"))
            if entity is None:
                self.stats.entities_not_found += 1
                continue

            document = self.find_or_create_document(entity, year)
            values = {}
            for column in financial_columns:
                raw = record.get(column)
                if should_skip_value(raw):
                    continue
                key = metric_key_for(column)
                values[key] = parse_amount(raw)
                self.find_or_create_metric(key, **self.column_metric_attributes(column))
                self.upsert_observation(entity, key, document, year, values[key], page_reference)

            for key, value in derive_metrics(values).items():
                self.upsert_observation(
                    entity, key, document, year, value, page_reference=f"Derived: {formula_for(key)}"
                )

        logger.info(
            f"OSC schools {year}: {self.stats.observations_created} created, "
            f"{self.stats.observations_updated} updated, {self.stats.observations_unchanged} unchanged"
        )
        return self.stats
