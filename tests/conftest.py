import os

# Must be set before delivery_workflow.config is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from delivery_workflow.db_models import Base
from delivery_workflow.db_models.enums import (
    ApproverType,
    DynamicApproverType,
    EntityType,
    Role,
    WorkflowActionType,
)
from delivery_workflow.definitions import build_definition
from delivery_workflow.models import (
    Project,
    StepDefinitionInput,
    WorkflowDefinitionCreateRequest,
)
from delivery_workflow.repository import InMemoryWorkflowRepository

SQLALCHEMY_DATABASE_URL = "sqlite://"


@pytest.fixture
def db_engine():
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def memory_repo():
    return InMemoryWorkflowRepository()


def three_step_request(**overrides) -> WorkflowDefinitionCreateRequest:
    """PM sign-off, then the task's project manager, then anyone on the engineering team."""
    values = dict(
        name="Task delivery approval",
        description="Gate before a task can be scheduled",
        entity_type=EntityType.TASK,
        steps=[
            StepDefinitionInput(
                id="step_pm",
                name="Product manager review",
                approver_type=ApproverType.ROLE,
                approver_role=Role.PM,
                requires_comment_on_reject=True,
            ),
            StepDefinitionInput(
                id="step_pjm",
                name="Project manager review",
                approver_type=ApproverType.DYNAMIC,
                dynamic_approver_type=DynamicApproverType.TASK_PM,
                requires_comment_on_send_back=True,
            ),
            StepDefinitionInput(
                id="step_eng",
                name="Engineering review",
                approver_type=ApproverType.DYNAMIC,
                dynamic_approver_type=DynamicApproverType.ENGINEERING_TEAM,
                requires_comment_on_send_back=True,
                allowed_actions=[
                    WorkflowActionType.APPROVE,
                    WorkflowActionType.SEND_BACK,
                    WorkflowActionType.REQUEST_CHANGE,
                ],
            ),
        ],
    )
    values.update(overrides)
    return WorkflowDefinitionCreateRequest(**values)


@pytest.fixture
def definition_request():
    return three_step_request()


@pytest.fixture
def definition(definition_request):
    return build_definition(definition_request)


@pytest.fixture
def task_context():
    return {"project_manager_id": "pjm-1", "assigned_developer_id": "dev-1"}


@pytest.fixture
def project():
    return Project(
        id="prj_test",
        name="Billing revamp",
        owner_id="pm-1",
        delivery_manager_id="pjm-1",
        vendor_company_ids=["vendor-a"],
    )


@pytest.fixture
def current_user():
    from delivery_workflow.core.security import AuthenticatedUser

    return AuthenticatedUser(user_id="pm-1", username="pm.one", role=Role.PM)


@pytest.fixture
def client(session_factory, current_user):
    """TestClient on a fresh SQLite schema; reassign ``client.user`` to switch actors."""
    from fastapi.testclient import TestClient

    from delivery_workflow.core.security import get_current_active_user
    from delivery_workflow.database import get_db
    from delivery_workflow.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    with TestClient(app) as test_client:
        test_client.user = current_user
        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_active_user] = lambda: test_client.user
        yield test_client
    app.dependency_overrides.clear()
