from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    app_name: str = 'sitesync-engine'
    app_env: str = Field(default='dev', alias='APP_ENV')
    app_port: int = Field(default=8000, alias='APP_PORT')

    database_url: str = Field(default='sqlite:///./data/sitesync.db', alias='DATABASE_URL')
    db_pool_size: int = Field(default=5, alias='DB_POOL_SIZE')
    db_max_overflow: int = Field(default=10, alias='DB_MAX_OVERFLOW')
    db_pool_timeout: int = Field(default=30, alias='DB_POOL_TIMEOUT')
    db_pool_recycle: int = Field(default=1800, alias='DB_POOL_RECYCLE')
    db_bootstrap_on_start: bool = Field(default=True, alias='DB_BOOTSTRAP_ON_START')

    # External source of record (legacy MariaDB attendance system)
    source_db_host: str = Field(default='', alias='SOURCE_DB_HOST')
    source_db_port: int = Field(default=3306, alias='SOURCE_DB_PORT')
    source_db_user: str = Field(default='', alias='SOURCE_DB_USER')
    source_db_password: str = Field(default='', alias='SOURCE_DB_PASSWORD')
    source_db_name: str = Field(default='mdidev', alias='SOURCE_DB_NAME')
    source_site_cd: str = Field(default='10', alias='SOURCE_SITE_CD')
    source_system_code: str = Field(default='FAS', alias='SOURCE_SYSTEM_CODE')
    source_connection_ttl_seconds: int = Field(default=30, alias='SOURCE_CONNECTION_TTL_SECONDS')
    source_ping_timeout_seconds: int = Field(default=5, alias='SOURCE_PING_TIMEOUT_SECONDS')
    source_query_timeout_seconds: int = Field(default=10, alias='SOURCE_QUERY_TIMEOUT_SECONDS')

    # Reconciliation
    batch_chunk_size: int = Field(default=100, alias='BATCH_CHUNK_SIZE')
    full_sync_batch_size: int = Field(default=50, alias='FULL_SYNC_BATCH_SIZE')
    full_sync_page_size: int = Field(default=0, alias='FULL_SYNC_PAGE_SIZE')
    full_sync_lock_ttl_seconds: int = Field(default=600, alias='FULL_SYNC_LOCK_TTL_SECONDS')
    incremental_lock_ttl_seconds: int = Field(default=240, alias='INCREMENTAL_LOCK_TTL_SECONDS')
    incremental_lookback_minutes: int = Field(default=5, alias='INCREMENTAL_LOOKBACK_MINUTES')
    source_status_ttl_seconds: int = Field(default=600, alias='SOURCE_STATUS_TTL_SECONDS')

    hmac_secret: str = Field(default='change_me_hmac_secret', alias='HMAC_SECRET')
    encryption_key: str = Field(default='change_me_encryption_key', alias='ENCRYPTION_KEY')

    # Scheduler
    scheduler_tick_seconds: float = Field(default=60.0, alias='SCHEDULER_TICK_SECONDS')
    scheduler_embedded: bool = Field(default=False, alias='SCHEDULER_EMBEDDED')
    scheduler_control_token: str = Field(default='', alias='SCHEDULER_CONTROL_TOKEN')

    # Alerting / telemetry
    alert_webhook_url: str = Field(default='', alias='ALERT_WEBHOOK_URL')
    alert_cooldown_seconds: int = Field(default=300, alias='ALERT_COOLDOWN_SECONDS')
    alert_http_timeout_seconds: float = Field(default=10.0, alias='ALERT_HTTP_TIMEOUT_SECONDS')
    elasticsearch_url: str = Field(default='', alias='ELASTICSEARCH_URL')
    elasticsearch_index_prefix: str = Field(default='safetywallet-logs', alias='ELASTICSEARCH_INDEX_PREFIX')

    cors_origins: str = Field(default='*', alias='CORS_ORIGINS')


settings = Settings()
