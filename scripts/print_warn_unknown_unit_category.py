"""
Print canonical WARN lines whose unit category is unknown.

Usage:
    python scripts/print_warn_unknown_unit_category.py ORG_ID LOCATION_ID [--limit 50]

Prints a quality snapshot for the target, then one JSON object per sampled
line, so the raw unit texts can be reviewed when tuning the unit rules.
"""
import argparse
import json

import structlog

from invoice_canon.database import SessionLocal
from invoice_canon.logging_config import configure_logging
from invoice_canon.services.canonical_diagnostics import (
    canonical_quality_snapshot,
    unknown_unit_category_samples,
)

logger = structlog.get_logger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("organisation_id")
    parser.add_argument("location_id")
    parser.add_argument("--limit", type=int, default=50)
    args = parser.parse_args()

    configure_logging(level="WARNING")

    db = SessionLocal()
    try:
        snapshot = canonical_quality_snapshot(db, args.organisation_id, args.location_id)
        print(json.dumps(snapshot.to_dict(), indent=2))

        samples = unknown_unit_category_samples(db, args.organisation_id, args.location_id, limit=args.limit)
        print(f"\n--- {len(samples)} WARN line(s) with UNKNOWN_UNIT_CATEGORY ---")
        for sample in samples:
            print(json.dumps(sample, sort_keys=True))
    finally:
        db.close()


if __name__ == "__main__":
    main()
