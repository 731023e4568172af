# jobs.py
"""
Entry points for the external scheduler (cron, Azure timer trigger...).

     python -m jobs expire-concessions
"""
import sys

from database import get_session_context
from logging_config import get_logger, setup_logging
from services.ledger_service import mark_expired_blocks

log = get_logger(__name__)


def run_expiry_sweep() -> int:
     """Expire every block past its expiry date. Returns the number expired."""
     with get_session_context() as db:
          count = mark_expired_blocks(db)
     log.info("scheduled_expiry_sweep_done", blocks_expired=count)
     return count


JOBS = {
     "expire-concessions": run_expiry_sweep,
}


if __name__ == "__main__":
     setup_logging()
     name = sys.argv[1] if len(sys.argv) > 1 else "expire-concessions"
     if name not in JOBS:
          print(f"Unknown job '{name}'. Available: {', '.join(JOBS)}")
          sys.exit(2)
     JOBS[name]()
