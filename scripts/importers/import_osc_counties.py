"""Import OSC Annual Financial Report data for NY counties.

Creates county entities on first sight ("County of Albany" -> "Albany County"),
one OSC metric per account code and one osc_county_afr document per county-year.

Usage:
    uv run python scripts/importers/import_osc_counties.py data/osc/counties_2024.csv
    uv run python scripts/importers/import_osc_counties.py data/osc/counties_*.csv --dry-run
"""

import argparse
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sqlalchemy.orm import Session

from nybenchmark.database import Base, engine
from nybenchmark.importers.osc_counties import OscCountyImporter


def main():
    parser = argparse.ArgumentParser(description="Import OSC county financial data")
    parser.add_argument("files", nargs="+", metavar="FILE", help="OSC county CSV exports")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()

    # Create tables if they don't exist
    print("Creating tables if needed...")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        importer = OscCountyImporter(session, dry_run=args.dry_run)
        for filepath in sorted(args.files):
            path = Path(filepath)
            if not path.exists():
                print(f"  Warning: {filepath} not found, skipping")
                continue

            print(f"  Importing {path.name}...")
            try:
                importer.import_file(path)
            except ValueError as e:
                print(f"    Skipped: {e}")
                importer.errors.append(f"{path.name}: {e}")
            # Commit per file so a later failure keeps earlier years
            importer.commit()

        print("\n=== Summary ===")
        for line in importer.stats.summary():
            print(line)


if __name__ == "__main__":
    main()
