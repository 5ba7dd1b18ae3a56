"""Pydantic validation schemas for NY municipal finance data.

Schema Engineering Philosophy:
- Enums are the canonical value sets shared by the ORM and the API
- Write-side schemas reject malformed records before anything is persisted
- Output models are the contract between the aggregation layer and the presentation layer

References:
- NYS Comptroller Annual Financial Report (AFR) account codes
- GASB Statement 54: Fund Balance Reporting (effective FY2011)
- US Census Bureau ACS 5-Year Estimates
"""

import re
from decimal import Decimal
from enum import Enum
from urllib.parse import urlparse
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# ENUMS: Canonical value sets with descriptions
# =============================================================================


class EntityKind(str, Enum):
    """The type of government unit."""

    CITY = "city"
    TOWN = "town"
    VILLAGE = "village"
    COUNTY = "county"
    SCHOOL_DISTRICT = "school_district"
    STATE = "state"


class GovernmentStructure(str, Enum):
    """How executive power is organized in a municipality."""

    STRONG_MAYOR = "strong_mayor"
    COUNCIL_MANAGER = "council_manager"
    COMMISSION = "commission"
    TOWN_BOARD = "town_board"
    MAYOR_ADMINISTRATOR = "mayor_administrator"


class FiscalAutonomy(str, Enum):
    """Whether a unit sets its own budget.

    The Big Five school districts are DEPENDENT: their budgets are part of the
    parent city's budget and they cannot levy taxes.
    """

    INDEPENDENT = "independent"
    DEPENDENT = "dependent"


class BoardSelection(str, Enum):
    """How the governing board is chosen."""

    ELECTED = "elected"
    APPOINTED = "appointed"
    MIXED = "mixed"


class ExecutiveSelection(str, Enum):
    """How the chief executive is chosen."""

    ELECTED_EXECUTIVE = "elected_executive"
    APPOINTED_PROFESSIONAL = "appointed_professional"


class SchoolLegalType(str, Enum):
    """Legal organization of a NY school district (Education Law)."""

    BIG_FIVE = "big_five"
    """Buffalo, New York City, Rochester, Syracuse, Yonkers.

    Fiscally dependent on the city. NYC does not file with OSC.
    """

    SMALL_CITY = "small_city"
    """City school district in a city under 125,000 population."""

    CENTRAL = "central"
    """Central school district. The most common form, including central high school districts."""

    UNION_FREE = "union_free"
    """Union free school district."""

    COMMON = "common"
    """Common school district. Rare, usually without a high school."""


class ValueType(str, Enum):
    """Whether a metric holds a number or a label."""

    NUMERIC = "numeric"
    TEXT = "text"


class DisplayFormat(str, Enum):
    """How a numeric metric is rendered."""

    CURRENCY = "currency"
    CURRENCY_ROUNDED = "currency_rounded"
    PERCENTAGE = "percentage"
    INTEGER = "integer"
    DECIMAL = "decimal"
    FTE = "fte"
    RATE = "rate"


class DataSource(str, Enum):
    """Where a metric's values come from."""

    MANUAL = "manual"
    """Entered by hand from a filed document."""

    OSC = "osc"
    """NYS Comptroller AFR data (non-NYC, and NYC pre-2011)."""

    CENSUS = "census"
    """US Census Bureau (population, income, poverty)."""

    DCJS = "dcjs"
    """NYS Division of Criminal Justice Services (crime stats)."""

    RATING_AGENCY = "rating_agency"
    """Bond ratings (Moody's, S&P, Fitch)."""

    DERIVED = "derived"
    """Calculated from other metrics (per-pupil, ratios)."""

    NYC_CHECKBOOK = "nyc_checkbook"
    """NYC Checkbook data (NYC 2011+)."""

    FSMS = "fsms"
    """OSC Fiscal Stress Monitoring System scores."""


class AccountType(str, Enum):
    """AFR financial statement an account belongs to."""

    REVENUE = "revenue"
    EXPENDITURE = "expenditure"
    BALANCE_SHEET = "balance_sheet"


class SourceType(str, Enum):
    """What kind of artifact a Document is."""

    PDF = "pdf"
    WEB = "web"
    BULK_DATA = "bulk_data"


class VerificationStatus(str, Enum):
    """Review state of an Observation."""

    PROVISIONAL = "provisional"
    """Entered but not yet checked against the source."""

    VERIFIED = "verified"
    """Checked by a reviewer, or loaded from an authoritative bulk source."""

    FLAGGED = "flagged"
    """A reviewer found a problem with the value or citation."""


class FilingCategory(str, Enum):
    """Why a city is missing from the latest OSC data."""

    CHRONIC = "chronic"
    """Three or more years behind, or never filed."""

    RECENT_LAPSE = "recent_lapse"
    """Usually files, missed the last year or two."""

    SPORADIC = "sporadic"
    """Filed fewer than 80% of the last ten years."""


# =============================================================================
# WRITE-SIDE SCHEMAS
# =============================================================================

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024
ALLOWED_ATTACHMENT_TYPES = {"application/pdf"}


class EntityCreate(BaseModel):
    """A government unit as submitted by an administrator or importer."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    slug: str = Field(
        min_length=1,
        max_length=200,
        description="URL key, lowercase words joined by hyphens (e.g., 'yonkers', 'albany-county')."
    )
    kind: EntityKind = EntityKind.CITY
    state: str = Field(default="NY", min_length=2, max_length=2)
    parent_id: UUID | None = Field(
        default=None,
        description="Parent unit for fiscally dependent entities (Big Five district -> city)."
    )
    government_structure: GovernmentStructure | None = None
    fiscal_autonomy: FiscalAutonomy | None = None
    board_selection: BoardSelection | None = None
    executive_selection: ExecutiveSelection | None = None
    school_legal_type: SchoolLegalType | None = None
    icma_recognition_year: int | None = Field(default=None, ge=1900, le=2100)
    osc_municipal_code: str | None = Field(default=None, max_length=20)
    fips_code: str | None = Field(default=None, max_length=10)
    organization_note: str | None = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        v = v.lower()
        if not SLUG_PATTERN.match(v):
            raise ValueError("slug may only contain lowercase letters, digits and hyphens")
        return v

    @field_validator("state")
    @classmethod
    def normalize_state(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def validate_school_legal_type(self) -> "EntityCreate":
        """School districts need a legal type; nothing else may have one."""
        if self.kind == EntityKind.SCHOOL_DISTRICT and self.school_legal_type is None:
            raise ValueError("school_legal_type is required for school districts")
        if self.kind != EntityKind.SCHOOL_DISTRICT and self.school_legal_type is not None:
            raise ValueError("school_legal_type must be blank unless kind is school_district")
        return self


class MetricCreate(BaseModel):
    """A measurable quantity definition."""

    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(min_length=1, max_length=120, description="Unique machine name.")
    label: str = Field(min_length=1, max_length=200)
    description: str | None = None
    unit: str | None = Field(default=None, max_length=50)
    value_type: ValueType = ValueType.NUMERIC
    display_format: DisplayFormat | None = None
    data_source: DataSource = DataSource.MANUAL
    account_code: str | None = Field(default=None, max_length=20)
    account_type: AccountType | None = None
    level_1_category: str | None = Field(default=None, max_length=100)
    level_2_category: str | None = Field(default=None, max_length=100)
    fund_code: str | None = Field(default=None, max_length=10)
    function_code: str | None = Field(default=None, max_length=20)
    object_code: str | None = Field(default=None, max_length=20)
    formula: str | None = Field(
        default=None,
        description="Human-readable derivation. Present only for derived metrics."
    )

    @model_validator(mode="after")
    def validate_display_format(self) -> "MetricCreate":
        if self.value_type == ValueType.NUMERIC and self.display_format is None:
            raise ValueError("display_format is required for numeric metrics")
        return self


class DocumentCreate(BaseModel):
    """A source artifact owned by one entity."""

    model_config = ConfigDict(str_strip_whitespace=True)

    entity_id: UUID
    title: str = Field(min_length=1, max_length=300)
    doc_type: str = Field(min_length=1, max_length=50, examples=["osc_afr", "us_census_acs5"])
    fiscal_year: int = Field(ge=1900, le=2100)
    source_url: str = Field(min_length=1, description="Where the document can be found. http or https only.")
    source_type: SourceType = SourceType.PDF
    notes: str | None = None

    # Attachment metadata; the bytes live in external storage
    file_name: str | None = None
    file_content_type: str | None = None
    file_byte_size: int | None = Field(default=None, ge=0)

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("source_url must be a valid http or https URL")
        return v

    @model_validator(mode="after")
    def validate_attachment(self) -> "DocumentCreate":
        has_file = self.file_name is not None
        if has_file and self.source_type == SourceType.WEB:
            raise ValueError("web documents cannot have a file attachment")
        if has_file and self.file_content_type not in ALLOWED_ATTACHMENT_TYPES:
            raise ValueError("file must be a PDF")
        if has_file and (self.file_byte_size or 0) > MAX_ATTACHMENT_BYTES:
            raise ValueError("file must be under 20MB")
        return self


class ObservationCreate(BaseModel):
    """One fact extracted from a document, entered for review."""

    model_config = ConfigDict(str_strip_whitespace=True)

    entity_id: UUID
    metric_id: UUID
    document_id: UUID
    value_numeric: Decimal | None = None
    value_text: str | None = None
    page_reference: str = Field(
        min_length=1,
        max_length=100,
        description="Citation within the document, e.g. 'p. 12' or 'Schedule A, line 4'."
    )
    pdf_page: int | None = Field(default=None, gt=0)
    notes: str | None = None

    @field_validator("value_text")
    @classmethod
    def blank_text_is_none(cls, v: str | None) -> str | None:
        return v or None

    @model_validator(mode="after")
    def validate_value_exclusivity(self) -> "ObservationCreate":
        if self.value_numeric is not None and self.value_text is not None:
            raise ValueError("Cannot have both a numeric and text value")
        if self.value_numeric is None and self.value_text is None:
            raise ValueError("Must have either a numeric value or a text value")
        return self


class ReviewAction(BaseModel):
    """Request body for flagging an observation."""

    reason: str = Field(min_length=1, description="What is wrong with the value or citation")


# =============================================================================
# ANALYSIS OUTPUT MODELS
# =============================================================================


class EntitySummary(BaseModel):
    """Minimal entity reference for lists and charts."""

    name: str
    slug: str
    kind: EntityKind


class RankedEntity(BaseModel):
    """One row of a cross-city leaderboard."""

    name: str
    slug: str
    value: float


class CityRankings(BaseModel):
    """Three leaderboards for the most recent well-covered year."""

    year: int | None = Field(description="Ranking year, or None when no year has enough data")
    fund_balance: list[RankedEntity] = Field(default_factory=list)
    debt_service: list[RankedEntity] = Field(default_factory=list)
    per_capita: list[RankedEntity] = Field(default_factory=list)


class FilingReport(BaseModel):
    """Non-filing cities grouped by category."""

    as_of_year: int
    chronic: list[EntitySummary] = Field(default_factory=list)
    recent_lapse: list[EntitySummary] = Field(default_factory=list)
    sporadic: list[EntitySummary] = Field(default_factory=list)
    total_cities: int = 0
    non_filer_count: int = 0
    filer_count: int = 0


class ScatterPoint(BaseModel):
    x: float
    y: float
    name: str
    slug: str | None = None


class ScatterSeries(BaseModel):
    """A chart series: one label, one color, many points."""

    name: str
    color: str
    data: list[ScatterPoint]


class CountyComparison(BaseModel):
    """Fiscal ratios vs. conservative share of county council seats."""

    years: list[int]
    year: int | None
    fund_balance: list[ScatterSeries] = Field(default_factory=list)
    debt_service: list[ScatterSeries] = Field(default_factory=list)
    operating_ratio: list[ScatterSeries] = Field(default_factory=list)


class ScatterMetricOption(BaseModel):
    key: str
    label: str
    format: DisplayFormat


class SchoolDistrictComparison(BaseModel):
    """Selections, filter options and grouped series for the district scatter."""

    metrics: list[ScatterMetricOption]
    x_axis: str
    y_axis: str
    years: list[int]
    year: int | None
    min_enrollment: int
    min_enrollment_options: list[int]
    district_type: SchoolLegalType | None
    legal_type_colors: dict[str, str]
    legal_type_labels: dict[str, str]
    series: list[ScatterSeries] = Field(default_factory=list)


class TrendSeries(BaseModel):
    """A year-keyed series for one line on a trend chart."""

    label: str
    account_type: str
    data: dict[int, float | None]


class HeroStats(BaseModel):
    """Headline numbers for an entity dashboard."""

    population: int | None = None
    population_year: int | None = None
    fund_balance_pct: float | None = None
    debt_service_pct: float | None = None
    per_capita_spending: int | None = None
    year: int | None = Field(default=None, description="Latest year with expenditure data")


class EntityTrends(BaseModel):
    """Curated time series for one entity's dashboard."""

    entity: EntitySummary
    balance_sheet: dict[str, TrendSeries] = Field(default_factory=dict)
    debt_service: dict[str, TrendSeries] = Field(default_factory=dict)
    revenue: dict[str, TrendSeries] = Field(default_factory=dict)
    expenditure: dict[str, TrendSeries] = Field(default_factory=dict)
    ratios: dict[str, TrendSeries] = Field(default_factory=dict)
    hero: HeroStats = Field(default_factory=HeroStats)

    @property
    def has_trends(self) -> bool:
        return bool(self.balance_sheet or self.debt_service or self.revenue or self.expenditure)


class ObservationRead(BaseModel):
    """An observation as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_id: UUID
    metric_id: UUID
    document_id: UUID
    fiscal_year: int
    value_numeric: Decimal | None
    value_text: str | None
    page_reference: str
    pdf_page: int | None
    verification_status: VerificationStatus
    verified_by: str | None = None
