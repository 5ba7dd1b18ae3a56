"""Account codes, category labels and rounding rules for OSC financial data.

OSC's Annual Financial Report (AFR) identifies every line with an account code
whose leading letter is the fund (A = General, T = Custodial, ...). Fund
balance reporting changed with GASB Statement 54: FY2010 and earlier report
A910 (reserved) and A911 (unreserved); FY2011 onward report A917 (unassigned).

References:
- OSC Accounting and Reporting Manual: https://www.osc.ny.gov/local-government/publications
- GASB 54: https://gasb.org/page/PageContent?pageId=/standards-guidance/pronouncements/summary-statement-no-54.html
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

# Custodial fund money belongs to others; counting it double-counts pass-through
CUSTODIAL_FUND_CODE = "T"

# Interfund transfers appear once as "Other Uses" and again as "Other Sources"
INTERFUND_TRANSFER_CATEGORY = "Other Uses"
INTERFUND_REVENUE_CATEGORY = "Other Sources"

DEBT_SERVICE_CATEGORY = "Debt Service"

UNASSIGNED_FUND_BALANCE_CODE = "A917"
CASH_CODES = ("A200", "A201")

POPULATION_METRIC_KEY = "census_b01003_001e"

GASB54_CUTOVER_YEAR = 2011


@dataclass(frozen=True)
class AccountCodeVersion:
    """Account codes in effect for an inclusive range of fiscal years."""

    first_year: int | None
    last_year: int | None
    codes: tuple[str, ...]
    standard: str

    def covers(self, fiscal_year: int) -> bool:
        if self.first_year is not None and fiscal_year < self.first_year:
            return False
        if self.last_year is not None and fiscal_year > self.last_year:
            return False
        return True


FUND_BALANCE_CODE_VERSIONS = (
    AccountCodeVersion(None, GASB54_CUTOVER_YEAR - 1, ("A910", "A911"), "pre-GASB 54"),
    AccountCodeVersion(GASB54_CUTOVER_YEAR, None, (UNASSIGNED_FUND_BALANCE_CODE,), "GASB 54"),
)


def fund_balance_codes(fiscal_year: int) -> tuple[str, ...]:
    """Return the general-fund balance account codes reported in a fiscal year."""
    for version in FUND_BALANCE_CODE_VERSIONS:
        if version.covers(fiscal_year):
            return version.codes
    raise LookupError(f"No fund balance codes defined for fiscal year {fiscal_year}")


def fund_code_for(account_code: str | None) -> str | None:
    """Fund letter from an AFR account code ('A917' -> 'A')."""
    if not account_code:
        return None
    first = account_code.strip()[:1].upper()
    return first if first.isalpha() else None


def round_half_up(value, places: int = 0) -> float:
    """Round like a spreadsheet: 0.5 goes away from zero, not to even."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent_of(numerator, denominator) -> float | None:
    """numerator / denominator * 100 to one decimal, or None when undefined."""
    if numerator is None or denominator is None or denominator == 0:
        return None
    return round_half_up(float(numerator) / float(denominator) * 100, 1)
