"""
Scheduled alert evaluation.

Run from cron, e.g. every 15 minutes:

    python -m meditrack.scripts.evaluate_alerts
    python -m meditrack.scripts.evaluate_alerts --clinic-id 3
"""

import argparse
import sys

from loguru import logger

from meditrack.alerts import evaluator
from meditrack.config import settings
from meditrack.database import SessionLocal, import_models
from meditrack.errors import InventoryError


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Evaluate alert rules against current stock.")
    parser.add_argument("--clinic-id", type=int, default=None, help="Only evaluate this clinic")
    return parser.parse_args(argv)


def main(argv=None, session_factory=SessionLocal) -> int:
    args = parse_args(argv)
    import_models()

    db = session_factory()
    try:
        if args.clinic_id is not None:
            results = evaluator.run_clinic_evaluation(db, args.clinic_id)
        else:
            results = evaluator.run_all_clinics(db)
    except InventoryError as exc:
        logger.error(f"Evaluation failed: {exc.message}")
        return 1
    finally:
        db.close()

    created = sum(len(r.created) for r in results)
    suppressed = sum(r.suppressed for r in results)
    logger.info(f"Evaluated {len(results)} rules: {created} alerts created, {suppressed} suppressed")
    return 0


if __name__ == "__main__":
    logger.add(settings.LOG_FILE, rotation=settings.LOG_ROTATION, level=settings.LOG_LEVEL)
    sys.exit(main())
