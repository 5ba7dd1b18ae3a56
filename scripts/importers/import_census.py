"""Import US Census ACS 5-year estimates for NY cities and counties.

Cities and counties are matched by Entity.fips_code. Requires CENSUS_API_KEY.

Usage:
    uv run python scripts/importers/import_census.py --year 2023
    uv run python scripts/importers/import_census.py --year 2019 --year 2023
    uv run python scripts/importers/import_census.py --year 2023 --dry-run   # Preview only
"""

import argparse
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sqlalchemy.orm import Session

from nybenchmark.database import Base, engine
from nybenchmark.importers.census import CensusImporter


def main():
    parser = argparse.ArgumentParser(description="Import Census ACS 5-year estimates")
    parser.add_argument("--year", type=int, action="append", required=True,
                        help="ACS 5-year vintage (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()

    # Create tables if they don't exist
    print("Creating tables if needed...")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        importer = CensusImporter(session, dry_run=args.dry_run)
        try:
            importer.validate_api_key()
        except RuntimeError as e:
            print(f"Error: {e}")
            sys.exit(1)

        try:
            for year in sorted(set(args.year)):
                print(f"\n=== Importing ACS 5-year {year}{' (dry run)' if args.dry_run else ''} ===")
                importer.import_year(year)
            importer.commit()
        finally:
            importer.close()

        print("\n=== Summary ===")
        for line in importer.stats.summary():
            print(line)


if __name__ == "__main__":
    main()
