import pytest
from pydantic import ValidationError

from app.config import Settings
from app.database import normalize_database_url


def test_defaults(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    settings = Settings(_env_file=None)

    assert settings.is_sqlite
    assert settings.TRANSFER_TRANSITION_MAX_ATTEMPTS == 3
    assert settings.DEFAULT_VARIANCE_REASON == "Shrinkage during transfer"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://a.example,https://b.example", ["https://a.example", "https://b.example"]),
        ('["https://a.example"]', ["https://a.example"]),
    ],
)
def test_cors_origins_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("CORS_ORIGINS", raw)

    assert Settings(_env_file=None).cors_origins_list == expected


def test_max_attempts_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, TRANSFER_TRANSITION_MAX_ATTEMPTS=0)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql+asyncpg://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("sqlite+aiosqlite:///./x.db", "sqlite+aiosqlite:///./x.db"),
    ],
)
def test_normalize_database_url(url, expected):
    assert normalize_database_url(url) == expected
