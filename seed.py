import logging

from dagflow import config
from dagflow.core.models import TaskSpec
from dagflow.db import repository
from dagflow.db.database import SessionLocal, init_db

logger = logging.getLogger("dagflow.seed")

CI_PIPELINE = [
    TaskSpec(
        name="build",
        type="build",
        config={"command": "echo building", "timeout": 300},
    ),
    TaskSpec(
        name="test",
        type="test",
        config={"command": "echo testing", "timeout": 60},
        depends_on=("build",),
    ),
    TaskSpec(
        name="deploy",
        type="deploy",
        config={"command": "echo deploying", "environment": "production"},
        depends_on=("test",),
    ),
]

if __name__ == "__main__":
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    init_db()
    db = SessionLocal()
    try:
        workflow = repository.get_workflow_by_name(db, "ci_pipeline")
        if workflow:
            logger.info("Workflow ci_pipeline already exists (%s)", workflow.id)
        else:
            workflow = repository.create_workflow(
                db,
                name="ci_pipeline",
                description="CI/CD pipeline with build, test and deploy tasks",
                tasks=CI_PIPELINE,
            )
            logger.info("Created workflow ci_pipeline (%s): build -> test -> deploy", workflow.id)
        logger.info("Run it with: WORKFLOW_ID=%s python run_workflow.py", workflow.id)
    finally:
        db.close()
