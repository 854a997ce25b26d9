"""Test configuration and fixtures."""

from typing import Callable, Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from control_center.api import app
from control_center.db.base import Base, get_db
from control_center.db.models import IssueModel
from control_center.lifecycle.enums import IssueState
from control_center.lifecycle.issues import IssueService
from control_center.lifecycle.schemas import IssueCreate, TransitionRequest

# Shortest legal path from CREATED to each state
PATHS = {
    IssueState.CREATED: [],
    IssueState.SPEC_READY: [IssueState.SPEC_READY],
    IssueState.IMPLEMENTING_PREP: [IssueState.SPEC_READY, IssueState.IMPLEMENTING_PREP],
    IssueState.REVIEW_READY: [
        IssueState.SPEC_READY,
        IssueState.IMPLEMENTING_PREP,
        IssueState.REVIEW_READY,
    ],
    IssueState.DONE: [
        IssueState.SPEC_READY,
        IssueState.IMPLEMENTING_PREP,
        IssueState.REVIEW_READY,
        IssueState.DONE,
    ],
    IssueState.HOLD: [IssueState.HOLD],
    IssueState.FAILED: [IssueState.FAILED],
}


@pytest.fixture
def engine():
    """Create a fresh in-memory database (with append-only triggers) for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(db_session) -> Generator[TestClient, None, None]:
    """TestClient whose requests share the test session."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_issue(db_session) -> Callable[..., IssueModel]:
    """Create an issue and walk it to ``state`` through legal transitions."""

    def _make(
        state: IssueState = IssueState.CREATED,
        title: str = "Test issue",
        canonical_id: Optional[str] = None,
        github_url: Optional[str] = "https://github.com/acme/app/issues/1",
        repository: Optional[str] = None,
        pr_number: Optional[int] = None,
        pr_url: Optional[str] = None,
    ) -> IssueModel:
        service = IssueService(db_session)
        issue = service.create(
            IssueCreate(
                title=title,
                canonical_id=canonical_id,
                github_url=github_url,
                repository=repository,
                pr_number=pr_number,
                pr_url=pr_url,
            )
        )
        for step in PATHS[state]:
            service.transition(issue.id, TransitionRequest(to_state=step))
        db_session.refresh(issue)
        return issue

    return _make


@pytest.fixture
def file_engine(tmp_path):
    """File-backed database so a second connection can commit mid-operation."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_session(file_engine) -> Generator[Session, None, None]:
    session = sessionmaker(bind=file_engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def competing_writer(file_engine) -> Callable[[str, IssueState], None]:
    """Commit a status change for an issue from an independent connection."""

    def _write(issue_id: str, status: IssueState) -> None:
        with file_engine.begin() as conn:
            conn.execute(
                text("UPDATE issues SET status = :status WHERE id = :id"),
                {"status": status.value, "id": issue_id},
            )

    return _write


@pytest.fixture
def make_file_issue(file_session) -> Callable[..., IssueModel]:
    """Like ``make_issue`` but on the file-backed database."""

    def _make(state: IssueState, **fields) -> IssueModel:
        service = IssueService(file_session)
        issue = service.create(IssueCreate(title="Race", **fields))
        for step in PATHS[state]:
            service.transition(issue.id, TransitionRequest(to_state=step))
        file_session.refresh(issue)
        return issue

    return _make
