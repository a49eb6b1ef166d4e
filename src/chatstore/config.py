from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class WarehouseSettings(BaseSettings):
    """Connection and resilience settings, read from ``BQ_*`` env vars."""

    model_config = SettingsConfigDict(env_prefix="BQ_", env_file=".env", extra="ignore")

    # Location
    project_id: str = "chatstore-dev"
    dataset: str = "chatstore"
    messages_table: str = "chat_messages"
    files_table: str = "chat_files"
    feedbacks_table: str = "feedbacks"
    base_url: str = "https://bigquery.googleapis.com/bigquery/v2"

    # Static bearer token for the CLI; services take an AccessTokenProvider
    access_token: str | None = None

    # Tables
    auto_create_tables: bool = False

    # Retry
    request_max_attempts: int = 3
    request_base_delay_ms: int = 300
    request_max_delay_ms: int = 3000
    request_timeout_seconds: float = 30.0

    # Rate limiting
    rate_limit_cooldown_ms: int = 30_000
    rate_limit_log_interval_ms: int = 30_000

    # Schema negotiation
    schema_probe_enabled: bool = True
    schema_probe_ttl_seconds: int = 600

    # Degraded reads log at most once per interval
    read_error_log_interval_ms: int = 60_000

    def table_ref(self, table: str) -> str:
        return f"{self.project_id}.{self.dataset}.{table}"

    @property
    def messages_table_ref(self) -> str:
        return self.table_ref(self.messages_table)

    @property
    def files_table_ref(self) -> str:
        return self.table_ref(self.files_table)

    @property
    def feedbacks_table_ref(self) -> str:
        return self.table_ref(self.feedbacks_table)

    @property
    def query_path(self) -> str:
        return f"projects/{self.project_id}/queries"

    def insert_all_path(self, table: str) -> str:
        return f"projects/{self.project_id}/datasets/{self.dataset}/tables/{table}/insertAll"


@lru_cache
def get_settings() -> WarehouseSettings:
    return WarehouseSettings()
