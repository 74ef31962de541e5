#!/usr/bin/env python3
"""Run the plugin-job worker.

USAGE:
    python -m devcrm.workers.start_arq_worker            # long-running
    python -m devcrm.workers.start_arq_worker --burst    # drain queue, exit

    Equivalent arq CLI:
    arq devcrm.workers.arq_worker.WorkerSettings
"""

import argparse
import logging
import os
import sys

from arq import run_worker

from devcrm.utils.env import load_env_file

logger = logging.getLogger(__name__)


def main(argv=None):
    parser = argparse.ArgumentParser(description="devcrm plugin job worker")
    parser.add_argument("--burst", action="store_true", help="process queued jobs then exit")
    args = parser.parse_args(argv)

    # .env must be loaded before WorkerSettings reads REDIS_URL / DATABASE_URL
    load_env_file()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    from devcrm.workers.arq_worker import WorkerSettings

    logger.info("Starting plugin worker (burst=%s)", args.burst)
    run_worker(WorkerSettings, burst=args.burst)


if __name__ == "__main__":
    main()
