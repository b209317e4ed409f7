"""
Shared fixtures: a fresh SQLite database and storage root per test, plus a
seeded firm with one account per internal role and a client.
"""

import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

PASSWORD = "correct-horse-battery"


@pytest.fixture
def sqlalchemy_db(tmp_path, monkeypatch):
    """Configure a fresh SQLAlchemy SQLite DB (and storage root) for tests."""
    from casebridge.config import get_settings
    from casebridge.db.session import reset_engine, init_db

    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'casebridge_test.db'}")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("REQUIRE_EMAIL_CONFIRMATION", "false")
    monkeypatch.setenv("REQUIRE_INTAKE_PAYMENT", "false")
    monkeypatch.delenv("REDIS_URL", raising=False)
    for var in ("SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD"):
        monkeypatch.delenv(var, raising=False)

    get_settings.cache_clear()
    reset_engine()
    init_db()

    yield

    reset_engine()
    get_settings.cache_clear()


@pytest.fixture
def db(sqlalchemy_db):
    from casebridge.db.session import SessionLocal, get_engine

    get_engine()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@dataclass
class SeededFirm:
    firm: object
    admin: object
    manager: object
    associate: object
    client: object

    def ctx(self, user):
        from casebridge.auth import auth_context_for_user
        return auth_context_for_user(user, session_id="test-session")


def add_staff(db, firm, email, role, first_name="Staff", last_name="Member"):
    from casebridge.auth import get_password_hash
    from casebridge.db.models import AccountType, User, UserStatus
    from datetime import datetime

    user = User(
        firm_id=firm.id,
        email=email,
        first_name=first_name,
        last_name=last_name,
        account_type=AccountType.STAFF,
        internal_role=role,
        status=UserStatus.ACTIVE,
        password_hash=get_password_hash(PASSWORD),
        email_confirmed_at=datetime.utcnow(),
    )
    db.add(user)
    db.commit()
    return user


def add_client(db, email, first_name="Client", last_name="Person"):
    from casebridge.auth import get_password_hash
    from casebridge.db.models import AccountType, User, UserStatus
    from datetime import datetime

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        account_type=AccountType.CLIENT,
        status=UserStatus.ACTIVE,
        password_hash=get_password_hash(PASSWORD),
        email_confirmed_at=datetime.utcnow(),
    )
    db.add(user)
    db.commit()
    return user


def seed_firm(db, domain="firm-a.test", name="Firm A"):
    from casebridge import firms
    from casebridge.db.models import InternalRole, User

    admin_email = f"admin@{domain}"
    registration, _ = firms.register_firm(db, name, admin_email, PASSWORD, "Ada", "Admin")
    firm = firms.complete_firm_registration(db, registration)
    admin = db.query(User).filter(User.email == admin_email).first()
    manager = add_staff(db, firm, f"manager@{domain}", InternalRole.CASE_MANAGER, "Chidi", "Manager")
    associate = add_staff(db, firm, f"associate@{domain}", InternalRole.ASSOCIATE_LAWYER, "Bola", "Associate")
    client = add_client(db, f"client@{domain}", "Kemi", "Client")
    return SeededFirm(firm=firm, admin=admin, manager=manager, associate=associate, client=client)


@pytest.fixture
def seeded(db):
    return seed_firm(db)


def make_matter(db, seeded, assign=True, title="Contract dispute"):
    """A matter for the seeded client, optionally assigned to the seeded associate."""
    from casebridge import matters

    admin = seeded.ctx(seeded.admin)
    matter = matters.create_matter(db, admin, seeded.client.id, title, description="Supplier breach")
    if assign:
        matter = matters.assign_matter(db, admin, matter.id, seeded.associate.id, seeded.manager.id)
    return matter


@pytest.fixture
def api(sqlalchemy_db):
    """API test client; the context manager runs startup (init_db)."""
    from fastapi.testclient import TestClient
    from casebridge.api import app

    with TestClient(app) as c:
        yield c


def staff_headers(api, email, password=PASSWORD):
    response = api.post("/auth/internal/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def client_headers(api, email, password=PASSWORD):
    response = api.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
