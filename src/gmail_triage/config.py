"""Application configuration and user settings.

Objective:
    Provide a single source of truth for configuration used across the
    application. Two layers exist:

    - :class:`AppConfig` is process configuration loaded from the
      environment / ``.env`` (API base URLs, storage backend, logging).
    - :class:`TriageSettings` is the user-editable configuration entered on
      the web page (API identifiers, model, batch size, query). It is
      persisted by :class:`gmail_triage.storage.TriageStore`.

Responsibilities:
    - Define the decision taxonomy (:class:`DecisionAction`) and the
      suggested category tags (:class:`TriageCategory`) used in the prompt.
    - Supply defaults so a missing or partial settings document never
      breaks startup.

High-level call tree:
    - :func:`get_config` -> returns :class:`AppConfig`
    - :class:`TriageSettings`
        - :attr:`TriageSettings.categories_list`
"""

from enum import Enum
from pathlib import Path
import logging

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Durable document keys
SETTINGS_KEY = "triage_settings_v1"
LAST_SCAN_KEY = "triage_last_scan_v1"

DEFAULT_QUERY = "from:notifications@github.com OR category:promotions OR category:social"

# Groups larger than this render collapsed on first display.
COLLAPSE_THRESHOLD = 12


class DecisionAction(str, Enum):
    """Actions the model may suggest for an email."""

    KEEP = "keep"
    TRASH = "trash"
    REVIEW = "review"


class TriageCategory(str, Enum):
    """Suggested topical tags.

    The category on a decision is free text; this list only seeds the prompt.
    """

    RECEIPT = "receipt"
    SECURITY = "security"
    WORK = "work"
    SCHOOL = "school"
    GITHUB = "github"
    NEWSLETTER = "newsletter"
    PROMO = "promo"
    SPAM = "spam"
    OTHER = "other"


class AppConfig(BaseSettings):
    """
    Process configuration loaded from environment variables.

    Attributes:
        gmail_api_base_url: Gmail REST base URL for the signed-in user.
        request_timeout: Timeout in seconds for Gmail requests.
        fetch_concurrency: Parallel metadata fetches per scan (1 = sequential).
        groq_max_retries: Retries the Groq SDK performs on 429/5xx.
        storage_backend: ``file`` or ``azure_blob``.
        data_dir: Directory used by the file backend.
        blob_account_url: Azure Storage account URL for the blob backend.
        blob_container: Azure Blob container for the blob backend.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    gmail_api_base_url: str = Field(
        default="https://gmail.googleapis.com/gmail/v1/users/me",
        description="Gmail API base URL",
    )
    request_timeout: int = Field(default=30, ge=1, description="HTTP timeout (seconds)")
    fetch_concurrency: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Concurrent metadata fetches per scan (1 keeps fetches sequential)",
    )
    groq_max_retries: int = Field(
        default=2, ge=0, description="Groq SDK retries on rate limits and server errors"
    )

    storage_backend: str = Field(
        default="file",
        description=(
            "Durable document backend. 'file' stores JSON documents under data_dir. "
            "'azure_blob' stores them in Azure Blob Storage."
        ),
    )
    data_dir: Path = Field(
        default=Path.home() / ".gmail_triage",
        description="Directory for the file document backend",
    )
    blob_account_url: str = Field(
        default="",
        description="Azure Storage account URL, e.g. https://<account>.blob.core.windows.net",
    )
    blob_container: str = Field(default="", description="Azure Blob container name")

    host: str = Field(default="127.0.0.1", description="Web server bind address")
    port: int = Field(default=8000, description="Web server port")
    log_level: str = Field(default="INFO", description="Logging level")


class TriageSettings(BaseModel):
    """
    User-entered settings, persisted as one JSON document.

    Attributes:
        google_client_id: OAuth client id used by the page's token client.
        groq_api_key: Groq API key.
        groq_model: Groq chat model name.
        batch_size: Emails sent per classification request.
        max_messages: Maximum messages listed per scan.
        query: Gmail search query.
    """

    google_client_id: str = ""
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"
    batch_size: int = Field(default=10, ge=1)
    max_messages: int = Field(default=50, ge=1)
    query: str = DEFAULT_QUERY

    @field_validator("google_client_id", "groq_api_key", "query", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @property
    def categories_list(self) -> list[str]:
        """Category tags offered to the model.

        Returns:
            list[str]: Category names.
        """
        return [cat.value for cat in TriageCategory]


def get_config() -> AppConfig:
    """
    Load and return process configuration.

    Returns:
        AppConfig: Configuration instance.
    """
    return AppConfig()
