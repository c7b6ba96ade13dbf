"""Default notifications fired once per terminal transition.

Collaborating domains replace these by constructing the services with
their own callables.
"""

import logging

from delivery_workflow.models import Project, WorkflowInstance

logger = logging.getLogger(__name__)


def workflow_completed(instance: WorkflowInstance) -> None:
    logger.info("%s %s cleared approval (workflow instance %s)",
                instance.entity_type.value.capitalize(), instance.entity_id, instance.id)


def package_activated(project: Project) -> None:
    logger.info("Project %s package is ACTIVE", project.id)
