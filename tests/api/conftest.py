"""Fixtures for API tests: the application with test database and sender."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from tourney.api.deps import get_notification_sender
from tourney.main import app
from tourney.models import User
from tourney.utils.db import get_db
from tourney.utils.security import create_access_token


@pytest_asyncio.fixture
async def client(db_session, sender) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, sharing the test session."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_sender] = lambda: sender

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers
