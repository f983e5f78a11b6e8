import argparse
import asyncio
import logging
import sys

from dagflow import config
from dagflow.core.errors import DagflowError
from dagflow.core.models import WorkflowState
from dagflow.db.database import init_db
from dagflow.engine.executor import run_workflow

logger = logging.getLogger("dagflow.run_workflow")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one dagflow workflow to completion")
    parser.add_argument(
        "--workflow-id",
        type=str,
        default=config.WORKFLOW_ID,
        help="Workflow to run (defaults to $WORKFLOW_ID)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=config.POLL_INTERVAL,
        help="Seconds between executor polls",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if not args.workflow_id:
        parser.error("a workflow id is required (--workflow-id or WORKFLOW_ID)")

    init_db()
    try:
        execution_id, status = asyncio.run(
            run_workflow(args.workflow_id, poll_interval=args.poll_interval)
        )
    except DagflowError as e:
        logger.error("Workflow %s aborted: %s", args.workflow_id, e)
        sys.exit(1)

    logger.info("Execution %s ended %s", execution_id, status)
    sys.exit(0 if status == WorkflowState.COMPLETED else 1)
