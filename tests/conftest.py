import os
from datetime import timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["AI_KILL_SWITCH"] = "false"

from app.core.clock import utcnow
from app.database import Base, get_db
from app.main import app
from app.services.ai_orchestrator import AIOrchestrator
from app.services.embedding_service import HashEmbeddingProvider
from fastapi.testclient import TestClient

from tests.fakes import FakeClassifier, FakeCompletion, InMemoryVectorIndex, RecordingNotifier

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite needs explicit BEGIN for SAVEPOINT to behave
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Clean session per test. Service commits/rollbacks act on a SAVEPOINT,
    the outer transaction is rolled back at teardown.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def fake_completion():
    return FakeCompletion()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ai(fake_completion, vector_index, classifier):
    return AIOrchestrator(
        embedder=HashEmbeddingProvider(),
        vector_index=vector_index,
        completion=fake_completion,
        classifier=classifier,
    )


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def org(db_session):
    """Create a default organization for tests."""
    from app.models.organization import Organization
    import uuid
    org = Organization(name=f"Alpha Corp {uuid.uuid4()}", slug=f"alpha-corp-{uuid.uuid4()}")
    db_session.add(org)
    db_session.commit()
    return org


def _user(db_session, org, email, role, name):
    from app.models.user import User
    user = User(email=email, full_name=name, role=role, organization_id=org.id, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope="function")
def hr_user(db_session, org):
    from app.models.user import UserRole
    return _user(db_session, org, "hr@alphacorp.com", UserRole.HR_ADMIN, "Hana HR")


@pytest.fixture(scope="function")
def manager(db_session, org):
    """Manager employee with a MANAGER login."""
    from app.models.employee import Employee
    from app.models.user import UserRole
    user = _user(db_session, org, "maya@alphacorp.com", UserRole.MANAGER, "Maya Manager")
    emp = Employee(organization_id=org.id, user_id=user.id, name="Maya Manager", job_title="Engineering Manager")
    db_session.add(emp)
    db_session.commit()
    return emp


@pytest.fixture(scope="function")
def employee(db_session, org, manager):
    from app.models.employee import Employee
    from app.models.user import UserRole
    user = _user(db_session, org, "eli@alphacorp.com", UserRole.EMPLOYEE, "Eli Engineer")
    emp = Employee(
        organization_id=org.id,
        user_id=user.id,
        manager_id=manager.id,
        name="Eli Engineer",
        job_title="Software Engineer",
        department="Platform",
        focus_areas=["delivery", "collaboration"],
    )
    db_session.add(emp)
    db_session.commit()
    return emp


@pytest.fixture(scope="function")
def outsider(db_session, org):
    """Employee-role user with no relation to `employee`."""
    from app.models.user import UserRole
    return _user(db_session, org, "olga@alphacorp.com", UserRole.EMPLOYEE, "Olga Outsider")


@pytest.fixture(scope="function")
def evidence(db_session, org, employee, manager):
    """Two OKRs and five recent feedback items for `employee`."""
    from app.models.feedback import Feedback
    from app.models.objective import Objective

    now = utcnow()
    okrs = [
        Objective(organization_id=org.id, owner_id=employee.id, title="Migrate billing to the new platform",
                  progress=90, status="active", created_at=now - timedelta(days=40), updated_at=now - timedelta(days=5)),
        Objective(organization_id=org.id, owner_id=employee.id, title="Cut p95 latency by 30%",
                  progress=60, status="at_risk", created_at=now - timedelta(days=30), updated_at=now - timedelta(days=3)),
    ]
    texts = [
        "Eli led the billing cutover and kept stakeholders informed.",
        "Great debugging during the latency incident.",
        "Code reviews are thorough and kind.",
        "Could share design docs earlier.",
        "Mentored the new hire through their first release.",
    ]
    feedback = [
        Feedback(organization_id=org.id, giver_id=manager.id, receiver_id=employee.id, content=t,
                 created_at=now - timedelta(days=2 + i))
        for i, t in enumerate(texts)
    ]
    db_session.add_all(okrs + feedback)
    db_session.commit()
    return {"okrs": okrs, "feedback": feedback}


@pytest.fixture(scope="function")
def client(db_session, ai):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.ai = ai
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.ai = None


@pytest.fixture
def pipeline_settings():
    """Pipeline tunables without retry backoff or a similarity floor."""
    from app.core.config import PipelineSettings
    return PipelineSettings(retry_backoff_seconds=0.0, min_similarity=0.0)


def _review(db_session, org, employee, **values):
    from app.models.performance_review import PerformanceReview
    review = PerformanceReview(organization_id=org.id, employee_id=employee.id, review_type="manager", version=1, **values)
    db_session.add(review)
    db_session.commit()
    return review


@pytest.fixture(scope="function")
def ai_review(db_session, org, employee, manager):
    """Review as left by the generator: status ai_generated, provenance set."""
    return _review(
        db_session, org, employee,
        reviewer_id=manager.user_id,
        status="ai_generated",
        strengths="AI: strong delivery [feedback:1]",
        areas_for_improvement="AI: share designs earlier",
        achievements="AI: billing migration",
        goals_for_next_period="AI: lead search work",
        is_ai_generated=True,
        ai_generated_at=utcnow(),
        ai_confidence_score=0.7,
        ai_sources=[],
    )


@pytest.fixture(scope="function")
def draft_review(db_session, org, employee, manager):
    return _review(db_session, org, employee, reviewer_id=manager.user_id, status="draft", strengths="Written by hand")
