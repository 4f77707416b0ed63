"""
Booking Background Worker Runner
Run this as a separate process: python run_worker.py
(equivalent to: arq bookingsync.worker.WorkerSettings)
"""

import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from arq.worker import run_worker

from bookingsync.worker import WorkerSettings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting booking background worker...")
    try:
        run_worker(WorkerSettings)
    except KeyboardInterrupt:
        logger.info("👋 Booking worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Booking worker crashed: {e}")
        sys.exit(1)
