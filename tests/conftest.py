"""Test configuration."""
import os
import shutil
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

# --- Default environment, set before the application is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./settlement_test.db")
os.environ.setdefault("DEV_API_KEY", "test-secret-key")
os.environ.setdefault("SETTLEMENT_ENV", "dev")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

from settlement import db  # noqa: E402
from settlement.main import app  # noqa: E402
from settlement.models import Engagement, EscrowHold  # noqa: E402
from settlement.models.api_key import ApiKey, ApiScope  # noqa: E402
from settlement.services import settlement as settlement_service  # noqa: E402
from settlement.services.access import Caller  # noqa: E402
from settlement.utils.apikey import hash_key  # noqa: E402
from settlement.utils.time import utcnow  # noqa: E402

ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path(os.environ["DATABASE_URL"].removeprefix("sqlite:///"))
TEMPLATE_PATH = DB_PATH.with_name("settlement_test_template.db")

CLIENT_ID = "client-1"
PRACTITIONER_ID = "practitioner-1"
ARBITER_ID = "arbiter-1"
ADMIN_ID = "admin-1"


def _build_template() -> None:
    """Build the schema once through Alembic; every test starts from a copy."""

    if TEMPLATE_PATH.exists():
        TEMPLATE_PATH.unlink()
    cfg = Config(str(ROOT / "alembic.ini"), attributes={"configure_logger": False})
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    cfg.set_main_option("sqlalchemy.url", f"sqlite:///{TEMPLATE_PATH}")
    command.upgrade(cfg, "head")


_build_template()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fresh_database() -> Iterator[None]:
    db.close_engine()
    shutil.copyfile(TEMPLATE_PATH, DB_PATH)
    db.init_engine()
    yield
    db.close_engine()


@pytest.fixture
def db_session(fresh_database: None) -> Iterator[Session]:
    session = db.new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def other_session(fresh_database: None) -> Iterator[Session]:
    """A second, independent connection to the same database."""

    session = db.new_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def override_db_dependency(request: pytest.FixtureRequest) -> Iterator[None]:
    if "db_session" not in request.fixturenames:
        yield
        return
    session = request.getfixturevalue("db_session")

    def _get_db() -> Iterator[Session]:
        yield session

    app.dependency_overrides[db.get_db] = _get_db
    yield
    app.dependency_overrides.pop(db.get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def legacy_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {os.environ['DEV_API_KEY']}"}


@pytest.fixture
def make_api_key(db_session: Session) -> Callable[..., dict[str, str]]:
    def _factory(scope: ApiScope, principal_id: str | None = None, *, is_active: bool = True) -> dict[str, str]:
        token = f"{scope.value}-{uuid4().hex}"
        api_key = ApiKey(
            name=f"{scope.value}-{uuid4().hex}",
            prefix="test_" + scope.value,
            key_hash=hash_key(token),
            scope=scope,
            principal_id=principal_id,
            is_active=is_active,
        )
        db_session.add(api_key)
        db_session.commit()
        return {"X-API-Key": token}

    return _factory


@pytest.fixture
def admin_headers(make_api_key) -> dict[str, str]:
    return make_api_key(ApiScope.admin, ADMIN_ID)


@pytest.fixture
def arbiter_headers(make_api_key) -> dict[str, str]:
    return make_api_key(ApiScope.arbiter, ARBITER_ID)


@pytest.fixture
def client_headers(make_api_key) -> dict[str, str]:
    return make_api_key(ApiScope.party, CLIENT_ID)


@pytest.fixture
def practitioner_headers(make_api_key) -> dict[str, str]:
    return make_api_key(ApiScope.party, PRACTITIONER_ID)


@pytest.fixture
def admin_caller() -> Caller:
    return Caller(principal_id=ADMIN_ID, scope=ApiScope.admin)


@pytest.fixture
def arbiter_caller() -> Caller:
    return Caller(principal_id=ARBITER_ID, scope=ApiScope.arbiter)


@pytest.fixture
def client_caller() -> Caller:
    return Caller(principal_id=CLIENT_ID, scope=ApiScope.party)


@pytest.fixture
def practitioner_caller() -> Caller:
    return Caller(principal_id=PRACTITIONER_ID, scope=ApiScope.party)


@pytest.fixture
def make_engagement(db_session: Session) -> Callable[..., Engagement]:
    def _factory(
        *,
        amount: str = "10000.00",
        firm_id: str | None = None,
        delivered: bool = True,
        **overrides,
    ) -> Engagement:
        engagement = Engagement(
            external_ref=f"eng-{uuid4().hex[:12]}",
            client_id=CLIENT_ID,
            practitioner_id=PRACTITIONER_ID,
            firm_id=firm_id,
            amount=Decimal(amount),
            currency="INR",
            delivered_at=utcnow() if delivered else None,
            **overrides,
        )
        db_session.add(engagement)
        db_session.commit()
        return engagement

    return _factory


@pytest.fixture
def make_hold(db_session: Session, make_engagement, admin_caller: Caller) -> Callable[..., EscrowHold]:
    def _factory(*, delay: timedelta = timedelta(days=7), now=None, **engagement_kwargs) -> EscrowHold:
        engagement = make_engagement(**engagement_kwargs)
        return settlement_service.create_hold(
            db_session,
            admin_caller,
            engagement.id,
            auto_release_delay=delay,
            now=now,
        )

    return _factory
