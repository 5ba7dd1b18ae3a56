"""OSC Fiscal Stress Monitoring System (FSMS) workbooks.

One workbook per year and entity type, e.g. `2024-munis-all-data-worksheet.xlsx`
or `2019-school-all-data-workbook.xls`. Each workbook has a fiscal sheet and,
in most years, an environmental sheet. Every sheet has a header row with a
Municode column, indicator point columns and a composite score/designation.

Indicator columns are labelled "Ind N" in the header row, or "Indicator N" in
a label row directly above it (older layouts).
"""

import logging
import math
import numbers
import re
from pathlib import Path

import pandas as pd

from ..models import Entity
from ..schemas import DataSource, DisplayFormat, ValueType
from .base import BulkImporter, ImportStats

logger = logging.getLogger(__name__)

FSMS_SOURCE_URL = "https://www.osc.ny.gov/local-government/fiscal-monitoring"

MUNI = "muni"
SCHOOL = "school"

# key -> (label, value_type, description)
COMPOSITE_METRICS = {
    "fsms_fiscal_score": (
        "FSMS Fiscal Score", ValueType.NUMERIC,
        "Composite fiscal stress score (higher means more stress)",
    ),
    "fsms_fiscal_stress_designation": (
        "FSMS Fiscal Stress Designation", ValueType.TEXT,
        "Significant, Moderate, Susceptible, or No Designation",
    ),
    "fsms_environmental_score": (
        "FSMS Environmental Score", ValueType.NUMERIC,
        "Composite environmental stress score",
    ),
    "fsms_environmental_stress_designation": (
        "FSMS Environmental Stress Designation", ValueType.TEXT,
        "Environmental stress designation",
    ),
}

# Header cells for composite columns, per sheet kind
SCORE_HEADERS = {
    "fiscal": ("fiscal score", "total fiscal score", "overall fiscal score"),
    "environmental": ("environmental score", "total environmental score", "total score"),
}
DESIGNATION_HEADERS = {
    "fiscal": ("type of stress", "fiscal stress designation", "stress designation"),
    "environmental": ("environmental designation", "environmental stress designation", "type of stress"),
}
MUNICODE_HEADERS = ("municode", "muni code", "municipal code")

INDICATOR_KEY_PATTERN = re.compile(r"^fsms_(muni|school)_(fiscal|env)_ind(\d+)_points$")

# Rows scanned for the header row
HEADER_SEARCH_ROWS = 15


# =============================================================================
# Workbook helpers
# =============================================================================


def file_type(filename: str) -> str:
    """'muni' or 'school' from a workbook file name."""
    name = Path(filename).name.lower()
    if "school" in name:
        return SCHOOL
    if "muni" in name:
        return MUNI
    raise ValueError(f"Cannot tell entity type from file name: {filename}")


def file_year(filename: str) -> int:
    match = re.match(r"^(\d{4})", Path(filename).name)
    if not match:
        raise ValueError(f"Cannot find a year in file name: {filename}")
    return int(match.group(1))


def _clean(cell) -> str:
    if cell is None or (isinstance(cell, float) and math.isnan(cell)):
        return ""
    return " ".join(str(cell).split())


def find_indicator_cols(headers: list) -> dict[int, int]:
    """{indicator number: column index} for 'Ind N' header cells."""
    cols = {}
    for index, cell in enumerate(headers):
        match = re.fullmatch(r"Ind\.?\s*(\d+)", _clean(cell), re.IGNORECASE)
        if match:
            cols[int(match.group(1))] = index
    return cols


def find_indicator_cols_from_labels(labels: list) -> dict[int, int]:
    """{indicator number: column index} for 'Indicator N' label cells."""
    cols = {}
    for index, cell in enumerate(labels):
        match = re.fullmatch(r"Indicator\s+(\d+)", _clean(cell), re.IGNORECASE)
        if match:
            cols[int(match.group(1))] = index
    return cols


def find_column(headers: list, candidates: tuple[str, ...]) -> int | None:
    normalized = [_clean(cell).lower() for cell in headers]
    for candidate in candidates:
        if candidate in normalized:
            return normalized.index(candidate)
    return None


def numeric_value(value) -> bool:
    """True for real numbers. Text such as 'Not filed', blanks and NaN are not."""
    if isinstance(value, bool) or not isinstance(value, numbers.Number):
        return False
    return not math.isnan(value)


def normalize_municode(value) -> str | None:
    """Excel often stores municodes as floats: 550262000000.0 -> '550262000000'."""
    if numeric_value(value):
        return f"{int(value):012d}"
    text = _clean(value)
    if not text:
        return None
    if text.endswith(".0"):
        text = text[:-2]
    return text.zfill(12) if text.isdigit() else text


def indicator_metric_key(entity_type: str, sheet_kind: str, number: int) -> str:
    prefix = "env" if sheet_kind == "environmental" else "fiscal"
    return f"fsms_{entity_type}_{prefix}_ind{number}_points"


# =============================================================================
# Importer
# =============================================================================


class FsmsImporter(BulkImporter):
    """Imports FSMS scores, designations and indicator points for one workbook at a time."""

    source_name = "fsms_import"
    data_source = DataSource.FSMS
    doc_type = "fsms_monitoring"

    def find_entity_by_municode(self, municode: str) -> Entity | None:
        return self.find_entity("osc_municipal_code", municode)

    def metric_attributes(self, key: str) -> dict:
        attributes = {"data_source": self.data_source, "unit": "points"}
        if key in COMPOSITE_METRICS:
            label, value_type, description = COMPOSITE_METRICS[key]
            attributes.update(label=label, value_type=value_type, description=description)
            if value_type == ValueType.NUMERIC:
                attributes["display_format"] = DisplayFormat.DECIMAL
            else:
                attributes["unit"] = None
            return attributes

        match = INDICATOR_KEY_PATTERN.match(key)
        if match:
            entity_type, kind, number = match.groups()
            who = "Municipal" if entity_type == MUNI else "School District"
            what = "Environmental" if kind == "env" else "Fiscal"
            attributes["label"] = f"FSMS {who} {what} Indicator {number} Points"
        else:
            attributes["label"] = key.replace("_", " ").title()
        attributes.update(value_type=ValueType.NUMERIC, display_format=DisplayFormat.DECIMAL)
        return attributes

    def document_attributes(self, entity: Entity, fiscal_year: int) -> dict:
        return {
            "title": f"{entity.name} FSMS Report {fiscal_year}",
            "source_url": FSMS_SOURCE_URL,
        }

    def import_file(self, path: Path) -> ImportStats:
        """Import every sheet of one FSMS workbook."""
        path = Path(path)
        entity_type = file_type(path.name)
        year = file_year(path.name)

        sheets = pd.read_excel(path, sheet_name=None, header=None)
        for sheet_name, frame in sheets.items():
            sheet_kind = "environmental" if "env" in sheet_name.lower() else "fiscal"
            rows = frame.astype(object).where(frame.notna(), None).values.tolist()
            self.import_sheet(rows, entity_type, sheet_kind, year, f"{path.name}, sheet {sheet_name}")

        logger.info(
            f"FSMS {path.name}: {self.stats.observations_created} created, "
            f"{self.stats.entities_not_found} entities not found"
        )
        return self.stats

    def import_sheet(self, rows: list[list], entity_type: str, sheet_kind: str, year: int, page_reference: str) -> None:
        """Import one sheet given as a list of cell rows."""
        header_index = self._header_row(rows)
        if header_index is None:
            logger.debug(f"No municode header in {page_reference}, skipping")
            return

        headers = rows[header_index]
        municode_col = find_column(headers, MUNICODE_HEADERS)
        indicator_cols = find_indicator_cols(headers)
        if not indicator_cols and header_index > 0:
            indicator_cols = find_indicator_cols_from_labels(rows[header_index - 1])
        score_col = find_column(headers, SCORE_HEADERS[sheet_kind])
        designation_col = find_column(headers, DESIGNATION_HEADERS[sheet_kind])

        for row in rows[header_index + 1:]:
            municode = normalize_municode(row[municode_col])
            if municode is None:
                continue
            self.stats.rows_processed += 1

            entity = self.find_entity_by_municode(municode)
            if entity is None:
                self.stats.entities_not_found += 1
                continue

            document = self.find_or_create_document(entity, year)
            if score_col is not None:
                self.save_observation(entity, f"fsms_{sheet_kind}_score", document, year, row[score_col], page_reference)
            if designation_col is not None:
                self.save_text_observation(
                    entity, f"fsms_{sheet_kind}_stress_designation", document, year, row[designation_col], page_reference
                )
            for number, col in sorted(indicator_cols.items()):
                key = indicator_metric_key(entity_type, sheet_kind, number)
                self.save_observation(entity, key, document, year, row[col], page_reference)

    def _header_row(self, rows: list[list]) -> int | None:
        for index, row in enumerate(rows[:HEADER_SEARCH_ROWS]):
            if find_column(row, MUNICODE_HEADERS) is not None:
                return index
        return None

    def save_observation(self, entity, key, document, year, value, page_reference="FSMS workbook"):
        if not numeric_value(value):
            self.stats.rows_skipped += 1
            return None
        return self.upsert_observation(entity, key, document, year, value, page_reference)

    def save_text_observation(self, entity, key, document, year, value, page_reference="FSMS workbook"):
        text = _clean(value)
        if not text:
            self.stats.rows_skipped += 1
            return None
        return self.upsert_observation(entity, key, document, year, text, page_reference)
