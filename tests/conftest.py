import pytest

from gmail_triage.config import AppConfig
from gmail_triage.storage import FileDocumentStore, TriageStore


@pytest.fixture
def config(tmp_path) -> AppConfig:
    """Process config pointing at a temporary data directory."""
    return AppConfig(data_dir=tmp_path / "data", storage_backend="file")


@pytest.fixture
def store(config) -> TriageStore:
    """File-backed store in a temporary directory."""
    return TriageStore(FileDocumentStore(config.data_dir))
