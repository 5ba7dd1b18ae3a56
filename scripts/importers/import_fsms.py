"""Import OSC Fiscal Stress Monitoring System workbooks.

Entities are matched by OSC municipal code. File names carry the year and
entity type, e.g. 2024-munis-all-data-worksheet.xlsx.

Usage:
    uv run python scripts/importers/import_fsms.py data/fsms/*.xls*
    uv run python scripts/importers/import_fsms.py data/fsms/2024-*.xlsx --dry-run
"""

import argparse
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sqlalchemy.orm import Session

from nybenchmark.database import Base, engine
from nybenchmark.importers.fsms import FsmsImporter


def main():
    parser = argparse.ArgumentParser(description="Import FSMS workbooks")
    parser.add_argument("files", nargs="+", metavar="FILE", help="FSMS .xls/.xlsx workbooks")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    args = parser.parse_args()

    # Create tables if they don't exist
    print("Creating tables if needed...")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        importer = FsmsImporter(session, dry_run=args.dry_run)
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
