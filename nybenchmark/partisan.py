"""County legislature partisan composition.

Read-only side input for the county comparison charts. The CSV has one row
per county, keyed by short county name ("Albany", not "Albany County"), with
seat counts per party line:

    Name, # Democrats, # Liberal not Dems, # Republicans, # Conservative not Reps, Unknown
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from .accounting import round_half_up

logger = logging.getLogger(__name__)

PARTISAN_CSV_PATH = Path(
    os.getenv("PARTISAN_CSV_PATH", "data/council_partisan_composition_2025.csv")
)

DEMOCRAT_COLUMNS = ("# Democrats", "# Liberal not Dems")
REPUBLICAN_COLUMNS = ("# Republicans", "# Conservative not Reps")
UNKNOWN_COLUMN = "Unknown"

R_MAJORITY = "R-Majority"
D_MAJORITY = "D-Majority"


@dataclass(frozen=True)
class PartisanComposition:
    conservative_pct: float
    majority: str


def short_county_name(entity_name: str) -> str:
    """'Albany County' -> 'Albany'."""
    return entity_name.removesuffix(" County")


def _seats(df: pd.DataFrame, columns: tuple[str, ...]) -> pd.Series:
    total = pd.Series(0, index=df.index)
    for column in columns:
        if column in df.columns:
            total = total + pd.to_numeric(df[column], errors="coerce").fillna(0).astype(int)
    return total


def parse_partisan_csv(path: Path) -> dict[str, PartisanComposition]:
    """Parse the composition CSV. Counties with no seats on record are skipped."""
    df = pd.read_csv(path, dtype=str)
    df = df[df["Name"].notna()]

    dems = _seats(df, DEMOCRAT_COLUMNS)
    reps = _seats(df, REPUBLICAN_COLUMNS)
    total = dems + reps + _seats(df, (UNKNOWN_COLUMN,))

    data = {}
    for idx, name in df["Name"].items():
        if total[idx] == 0:
            continue
        pct = round_half_up(float(reps[idx]) / float(total[idx]) * 100, 1)
        data[name.strip()] = PartisanComposition(
            conservative_pct=pct,
            majority=R_MAJORITY if reps[idx] > dems[idx] else D_MAJORITY,
        )
    return data


class PartisanCache:
    """Parses the composition CSV at most once per aggregation call."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path else PARTISAN_CSV_PATH
        self._data: dict[str, PartisanComposition] | None = None

    def data(self) -> dict[str, PartisanComposition]:
        if self._data is None:
            if self.path.exists():
                self._data = parse_partisan_csv(self.path)
            else:
                logger.warning(f"Partisan composition file not found: {self.path}")
                self._data = {}
        return self._data

    def lookup(self, entity_name: str) -> PartisanComposition | None:
        return self.data().get(short_county_name(entity_name))
