#!/usr/bin/env python3
"""
Dev helper: import the miner reward pool from a CSV file.

Each dispatch pays its miner reward to an address drawn at random from the
active rows of the miner_addresses table. This script loads that table from a
CSV export of a mining pool's top miners.

CSV format
----------
Header row required. Columns:

  address   Kaspa address (kaspa:...)              required
  rank      position in the pool leaderboard        optional

Usage
-----
# Upsert all rows as active
python scripts/import_miners.py miners.csv

# Mark every address not present in the CSV as inactive
python scripts/import_miners.py miners.csv --deactivate-missing

# Validate only, write nothing
python scripts/import_miners.py miners.csv --dry-run

Environment / .env
------------------
SUPABASE_URL, SUPABASE_KEY, SUPABASE_SERVICE_KEY   (service key required)
"""

import argparse
import csv
import sys
from pathlib import Path

from kasmail.services.kaspa import is_kaspa_address


def read_miners(path: Path) -> tuple[list[dict], list[str]]:
    """
    Parse the CSV into miner_addresses rows.

    Returns (rows, problems). Invalid addresses and duplicates are reported,
    not imported.
    """
    rows: list[dict] = []
    problems: list[str] = []
    seen: set = set()

    with path.open(newline="") as fh:
        reader = csv.DictReader(fh)
        if not reader.fieldnames or "address" not in reader.fieldnames:
            raise ValueError("CSV must have an 'address' column")

        for line_no, record in enumerate(reader, start=2):
            address = (record.get("address") or "").strip()
            if not is_kaspa_address(address):
                problems.append(f"line {line_no}: invalid address {address!r}")
                continue
            if address in seen:
                problems.append(f"line {line_no}: duplicate address {address}")
                continue
            seen.add(address)

            rank_raw = (record.get("rank") or "").strip()
            try:
                rank = int(rank_raw) if rank_raw else None
            except ValueError:
                problems.append(f"line {line_no}: rank {rank_raw!r} is not an integer")
                rank = None

            rows.append({"address": address, "rank": rank, "is_active": True})

    return rows, problems


def main() -> int:
    parser = argparse.ArgumentParser(description="Import KasMail miner reward addresses")
    parser.add_argument("csv_file", type=Path, help="CSV with address[,rank] columns")
    parser.add_argument("--deactivate-missing", action="store_true",
                        help="set is_active=false for addresses not in the CSV")
    parser.add_argument("--dry-run", action="store_true", help="validate without writing")
    args = parser.parse_args()

    if not args.csv_file.exists():
        print(f"File not found: {args.csv_file}", file=sys.stderr)
        return 1

    rows, problems = read_miners(args.csv_file)
    for problem in problems:
        print(f"  skipped {problem}", file=sys.stderr)
    print(f"{len(rows)} valid miner addresses ({len(problems)} skipped)")

    if args.dry_run or not rows:
        return 0

    from kasmail.db import supabase_admin

    if supabase_admin is None:
        print("SUPABASE_SERVICE_KEY is required to import miners", file=sys.stderr)
        return 1

    supabase_admin.table("miner_addresses").upsert(rows, on_conflict="address").execute()
    print(f"Upserted {len(rows)} rows into miner_addresses")

    if args.deactivate_missing:
        imported = [r["address"] for r in rows]
        (
            supabase_admin.table("miner_addresses")
            .update({"is_active": False})
            .not_.in_("address", imported)
            .execute()
        )
        print("Deactivated addresses missing from the CSV")

    return 0


if __name__ == "__main__":
    sys.exit(main())
