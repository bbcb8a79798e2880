import pytest

from context_keeper.adapters.db.base import create_db_engine, create_schema, create_session_factory
from context_keeper.core.config import load_settings


@pytest.fixture
def settings():
    return load_settings(
        database_url="sqlite://",
        github_api_url="https://api.github.test",
        network_retry_backoff_seconds=0,
        server_error_retry_backoff_seconds=0,
        jwt_secret="test-secret",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session
