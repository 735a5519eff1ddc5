"""
Shared fixtures: every test runs against its own SQLite file and storage dirs.
"""
import pytest

from core.climatiq import reset_factor_client
from core.config import reset_settings
from core.db import get_db, reset_db
from llm.classify import ResilientClassifier, reset_classifier
from llm.client import reset_client


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Point settings at tmp_path and drop all singletons around each test."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "test.db"))
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "files"))
    monkeypatch.setenv("REPORTS_PATH", str(tmp_path / "reports"))
    monkeypatch.setenv("OPENAI_API_KEY", "")
    monkeypatch.setenv("CLIMATIQ_API_KEY", "")
    monkeypatch.setenv("CLASSIFICATION_BATCH_DELAY", "0")
    for name in ("PORT", "LOG_LEVEL", "APP_NAME", "CLASSIFICATION_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)

    reset_settings()
    reset_db()
    reset_client()
    reset_factor_client()
    reset_classifier()
    yield
    reset_settings()
    reset_db()
    reset_client()
    reset_factor_client()
    reset_classifier()


@pytest.fixture
def db():
    return get_db()


@pytest.fixture
def rules_classifier():
    """Resilient classifier with no remote side."""
    return ResilientClassifier(primary=None)


SAMPLE_CSV = (
    "Merchant,Amount,Date\n"
    "Shell Fuel,45.00,01/03/2024\n"
    "EDF Energy,€120.00,2024-03-05\n"
    "Ryanair,150,05-03-2024\n"
)


@pytest.fixture
def sample_csv():
    return SAMPLE_CSV
