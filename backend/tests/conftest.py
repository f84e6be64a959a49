import os
import tempfile
from pathlib import Path

import pytest

# Importing the app creates tables on the module-level engine; keep that
# engine away from the developer database.
_IMPORT_DB = Path(tempfile.mkdtemp(prefix="teamhub-tests-")) / "import.db"
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_IMPORT_DB}")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from teamhub import main, models  # noqa: E402
from teamhub.database import build_engine, create_db_and_tables, get_session  # noqa: E402
from teamhub.models import Role  # noqa: E402
from teamhub.notifications import InMemoryDispatcher  # noqa: E402
from teamhub.policy import Principal  # noqa: E402
from teamhub.services import PWD_CTX, AuthService  # noqa: E402


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file database per test."""
    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}", lock_timeout=10)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine, expire_on_commit=False) as s:
        yield s


@pytest.fixture
def dispatcher():
    return InMemoryDispatcher()


@pytest.fixture
def client(engine, dispatcher):
    def _session():
        with Session(engine, expire_on_commit=False) as s:
            yield s

    main.app.dependency_overrides[get_session] = _session
    main.app.dependency_overrides[main.get_dispatcher] = lambda: dispatcher
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def make_student(engine):
    """Create a student (or admin) directly in the database."""
    def _make(student_id: str, full_name: str | None = None, role: Role = Role.STUDENT) -> Principal:
        with Session(engine) as s:
            s.add(models.Student(
                id=student_id,
                full_name=full_name or f"Student {student_id}",
                email=f"{student_id.lower()}@uni.edu",
                password_hash=PWD_CTX.hash("secret"),
                role=role.value,
                major="SE",
                cohort="K18",
            ))
            s.commit()
        return Principal(id=student_id, role=role.value)
    return _make


@pytest.fixture
def make_lecturer(engine):
    def _make(lecturer_id: str, full_name: str | None = None) -> Principal:
        with Session(engine) as s:
            s.add(models.Lecturer(
                id=lecturer_id,
                full_name=full_name or f"Lecturer {lecturer_id}",
                email=f"{lecturer_id.lower()}@uni.edu",
                password_hash=PWD_CTX.hash("secret"),
            ))
            s.commit()
        return Principal(id=lecturer_id, role=Role.LECTURER.value)
    return _make


@pytest.fixture
def read(engine):
    """Run a read-only callable in a short-lived session."""
    def _read(fn):
        with Session(engine) as s:
            return fn(s)
    return _read


@pytest.fixture
def auth_headers():
    def _headers(principal: Principal) -> dict:
        return {"Authorization": f"Bearer {AuthService.issue_token(principal.id, principal.role)}"}
    return _headers
