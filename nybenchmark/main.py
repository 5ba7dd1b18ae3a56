"""FastAPI application for the NY municipal finance benchmark."""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID

import logfire
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session
from starlette.requests import Request

from .county_scatter import load_county_comparison
from .database import get_db, init_db
from .filing_status import filing_report, latest_majority_year
from .models import Entity, Observation
from .observations import (
    ObservationValidationError,
    flag_observation,
    next_provisional_observation,
    record_observation,
    verify_observation,
)
from .partisan import PartisanCache
from .rankings import load_city_rankings
from .school_scatter import load_school_district_comparison
from .schemas import (
    CityRankings,
    CountyComparison,
    EntityTrends,
    FilingReport,
    ObservationCreate,
    ObservationRead,
    ReviewAction,
    SchoolDistrictComparison,
)
from .trends import load_entity_trends

logger = logging.getLogger(__name__)

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")

# Admin authentication
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "dev-admin-token")
security = HTTPBearer(auto_error=False)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield


app = FastAPI(
    title="NY Benchmark API",
    description="Cross-entity financial comparisons for New York cities, counties and school districts",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure Logfire for observability
if os.getenv("LOGFIRE_TOKEN"):
    logfire.configure()
    logfire.instrument_fastapi(app)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in CORS_ORIGINS if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def verify_admin(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Verify admin bearer token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Admin token required")
    if credentials.credentials != ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid admin token")
    return True


def get_partisan() -> PartisanCache:
    """One partisan CSV read per request."""
    return PartisanCache()


@app.exception_handler(ObservationValidationError)
async def observation_validation_handler(request: Request, exc: ObservationValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "NY Benchmark API"}


@app.get("/llms.txt", response_class=PlainTextResponse)
async def llms_txt():
    """Documentation for AI agents about this API."""
    return """# NY Benchmark API

## Overview
Financial benchmarks for New York State local governments: cities, counties
and school districts. Every number is an Observation: one metric value for
one entity in one fiscal year, cited to a source document.

## Data Sources
- OSC: NYS Comptroller Annual Financial Report data (account-level amounts)
- Census: ACS 5-year population and income estimates
- FSMS: OSC Fiscal Stress Monitoring System scores and designations
- Derived: per-pupil and percentage metrics computed from the above

## Key Concepts
- Fund balance: unassigned fund balance (A917) from FY2011, A910 + A911 before (GASB 54)
- Comparison year: most recent fiscal year enough of the cohort has reported
- Non-filers: cities missing from the latest OSC data (chronic, recent lapse, sporadic)

## API Endpoints
- GET / - Health check
- GET /llms.txt - This documentation
- GET /api/rankings - City leaderboards: fund balance %, debt service %, per-capita spending
- GET /api/non-filers?as_of_year= - Cities behind on OSC filings
- GET /api/counties/compare?year= - County fiscal ratios vs. council partisan composition
- GET /api/school-districts/compare?x_axis=&y_axis=&year=&min_enrollment=&district_type= - District scatter
- GET /api/entities/{slug}/trends - Time series and headline stats for one entity
"""


# =============================================================================
# Comparisons
# =============================================================================


@app.get("/api/rankings", response_model=CityRankings)
async def get_rankings(db: Session = Depends(get_db)) -> CityRankings:
    return load_city_rankings(db)


@app.get("/api/non-filers", response_model=FilingReport)
async def get_non_filers(as_of_year: int | None = None, db: Session = Depends(get_db)) -> FilingReport:
    """Cities without OSC data for the as-of year.

    Defaults to the latest year most cities have filed, or the current year.
    """
    if as_of_year is None:
        as_of_year = latest_majority_year(db) or datetime.utcnow().year
    return filing_report(db, as_of_year)


@app.get("/api/counties/compare", response_model=CountyComparison)
async def compare_counties(
    year: int | None = None,
    db: Session = Depends(get_db),
    partisan: PartisanCache = Depends(get_partisan),
) -> CountyComparison:
    return load_county_comparison(db, year, partisan)


@app.get("/api/school-districts/compare", response_model=SchoolDistrictComparison)
async def compare_school_districts(
    x_axis: str | None = None,
    y_axis: str | None = None,
    year: int | None = None,
    min_enrollment: int | None = None,
    district_type: str | None = None,
    db: Session = Depends(get_db),
) -> SchoolDistrictComparison:
    return load_school_district_comparison(db, x_axis, y_axis, year, min_enrollment, district_type)


@app.get("/api/entities/{slug}/trends", response_model=EntityTrends)
async def get_entity_trends(slug: str, db: Session = Depends(get_db)) -> EntityTrends:
    entity = db.scalars(select(Entity).where(Entity.slug == slug)).first()
    if not entity:
        raise HTTPException(status_code=404, detail="Entity not found")
    return load_entity_trends(db, entity)


# =============================================================================
# Observations
# =============================================================================


def _get_observation(db: Session, observation_id: UUID) -> Observation:
    observation = db.get(Observation, observation_id)
    if not observation:
        raise HTTPException(status_code=404, detail="Observation not found")
    return observation


@app.post("/api/observations", response_model=ObservationRead, status_code=201)
async def create_observation(payload: ObservationCreate, db: Session = Depends(get_db)) -> ObservationRead:
    """Record a provisional observation for review."""
    observation = record_observation(db, payload)
    db.commit()
    db.refresh(observation)
    return ObservationRead.model_validate(observation)


@app.post(
    "/api/observations/{observation_id}/verify",
    response_model=ObservationRead,
    dependencies=[Depends(verify_admin)],
)
async def verify(observation_id: UUID, db: Session = Depends(get_db)) -> ObservationRead:
    observation = verify_observation(db, _get_observation(db, observation_id), reviewer="admin")
    db.commit()
    return ObservationRead.model_validate(observation)


@app.post(
    "/api/observations/{observation_id}/flag",
    response_model=ObservationRead,
    dependencies=[Depends(verify_admin)],
)
async def flag(observation_id: UUID, action: ReviewAction, db: Session = Depends(get_db)) -> ObservationRead:
    observation = flag_observation(db, _get_observation(db, observation_id), reviewer="admin", reason=action.reason)
    db.commit()
    return ObservationRead.model_validate(observation)


@app.get(
    "/api/observations/{observation_id}/next",
    response_model=ObservationRead | None,
    dependencies=[Depends(verify_admin)],
)
async def next_for_review(observation_id: UUID, db: Session = Depends(get_db)) -> ObservationRead | None:
    """Next provisional observation in the review queue, or null when it is empty."""
    found = next_provisional_observation(db, _get_observation(db, observation_id))
    return ObservationRead.model_validate(found) if found else None
