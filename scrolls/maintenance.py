"""
Batch maintenance sweeps, meant to run from cron.

- Abandons in-progress attempts nobody will come back to (quiz window closed
  long ago, or the attempt is older than STALE_ATTEMPT_MAX_AGE_HOURS)
- Fails generation jobs still pending/processing past their deadline

USAGE:
    python -m scrolls.maintenance [--skip-attempts] [--skip-jobs]
"""

import argparse
import logging
import sys
from typing import List, Optional

from scrolls.config import settings
from scrolls.database import SessionLocal
from scrolls.services.attempt_service import attempt_service
from scrolls.services.job_store import JobStore, get_job_store

logger = logging.getLogger(__name__)


def run_sweeps(db, store: Optional[JobStore], skip_attempts: bool = False, skip_jobs: bool = False) -> dict:
    """Run the selected sweeps and return their counts"""
    results = {"abandoned_attempts": 0, "expired_jobs": 0}

    if not skip_attempts:
        results["abandoned_attempts"] = attempt_service.abandon_stale_attempts(db)

    if not skip_jobs and store is not None:
        results["expired_jobs"] = store.expire_stale()

    return results


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Clean up stale quiz attempts and orphaned generation jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--skip-attempts", action="store_true", help="Do not sweep quiz attempts")
    parser.add_argument("--skip-jobs", action="store_true", help="Do not sweep generation jobs")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    db = SessionLocal()
    try:
        store = None if args.skip_jobs else get_job_store()
        results = run_sweeps(db, store, args.skip_attempts, args.skip_jobs)
    except Exception as e:
        db.rollback()
        logger.error(f"Maintenance sweep failed: {str(e)}", exc_info=True)
        return 1
    finally:
        db.close()

    print(f"Abandoned stale attempts: {results['abandoned_attempts']}")
    print(f"Expired generation jobs: {results['expired_jobs']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
