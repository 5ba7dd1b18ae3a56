"""Import OSC level-two financial data for NY school districts.

One wide CSV per fiscal year (leveltwo24.csv -> FY2024). Creates districts on
first sight, imports every financial column as a school_* metric, then derives
the per-pupil and percentage comparison metrics.

Usage:
    uv run python scripts/importers/import_osc_schools.py data/osc/leveltwo*.csv
    uv run python scripts/importers/import_osc_schools.py data/osc/leveltwo24.csv --dry-run
"""

import argparse
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sqlalchemy.orm import Session

from nybenchmark.database import Base, engine
from nybenchmark.importers.osc_schools import OscSchoolImporter


def main():
    parser = argparse.ArgumentParser(description="Import OSC school district financial data")
    parser.add_argument("files", nargs="+", metavar="FILE", help="leveltwoYY.csv files")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()

    # Create tables if they don't exist
    print("Creating tables if needed...")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        importer = OscSchoolImporter(session, dry_run=args.dry_run)
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
            importer.commit()

        print("\n=== Summary ===")
        for line in importer.stats.summary():
            print(line)


if __name__ == "__main__":
    main()
