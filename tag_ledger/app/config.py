"""Config file."""
from decimal import Decimal
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


STARKNET_CHAIN_KEY = "STRK"
EVM_CHAIN_KEYS: tuple[str, ...] = ("BASE", "LSK", "FLOW", "U2U")

# Env prefixes differ from the chain keys for historical reasons.
_CHAIN_ENV_PREFIX: dict[str, str] = {
    "STRK": "STARKNET_",
    "BASE": "BASE_",
    "LSK": "LISK_",
    "FLOW": "FLOW_",
    "U2U": "U2U_",
}


class ChainSettings(BaseSettings):
    """
    Per-chain connection settings.

    Loaded with a chain-specific env prefix, e.g. BASE_RPC_URL,
    BASE_CONTRACT_ADDRESS, LISK_PRIVATE_KEY, STARKNET_TOKEN_ADDRESS.
    """

    network: str = "testnet"
    rpc_url: str | None = None
    contract_address: str | None = None
    account_address: str | None = None
    private_key: SecretStr | None = None
    token_address: str | None = None
    decimals: int = 18

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def is_configured(self) -> bool:
        return bool(self.rpc_url and self.contract_address)


class Settings(BaseSettings):
    """Application settings."""

    # PROJECT
    project_name: str = Field("tag-ledger", alias="PROJECT_NAME")

    # DATABASE
    postgres_user: str = Field(..., alias="POSTGRES_USER")
    postgres_password: SecretStr = Field(..., alias="POSTGRES_PASSWORD")
    postgres_server: str = Field(..., alias="POSTGRES_SERVER")
    postgres_port: int = Field(..., alias="POSTGRES_PORT")
    postgres_db: str = Field(..., alias="POSTGRES_DB")
    database_url: str | None = None
    db_pool_size: int = Field(5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(10, alias="DB_MAX_OVERFLOW")
    db_echo: bool = Field(False, alias="DB_ECHO")
    sync_database_url: str | None = None

    # REDIS (lock + task broker)
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    lock_backend: str = Field("redis", alias="LOCK_BACKEND")

    # RECONCILER
    reconcile_interval_seconds: float = Field(10.0, alias="RECONCILE_INTERVAL_SECONDS")
    reconcile_lock_ttl_seconds: float = Field(15.0, alias="RECONCILE_LOCK_TTL_SECONDS")
    reconcile_batch_size: int = Field(5, alias="RECONCILE_BATCH_SIZE")
    reconcile_epsilon: Decimal = Field(Decimal("1e-10"), alias="RECONCILE_EPSILON")

    # CHAIN RPC
    rpc_retry_attempts: int = Field(3, alias="RPC_RETRY_ATTEMPTS")
    rpc_retry_base_delay_seconds: float = Field(2.0, alias="RPC_RETRY_BASE_DELAY_SECONDS")
    rpc_timeout_seconds: float = Field(30.0, alias="RPC_TIMEOUT_SECONDS")

    # LISTENER
    listener_poll_interval_seconds: float = Field(10.0, alias="LISTENER_POLL_INTERVAL_SECONDS")
    listener_block_chunk_size: int = Field(500, alias="LISTENER_BLOCK_CHUNK_SIZE")

    # EVENT CONSUMER
    event_job_max_attempts: int = Field(3, alias="EVENT_JOB_MAX_ATTEMPTS")
    event_job_backoff_seconds: int = Field(5, alias="EVENT_JOB_BACKOFF_SECONDS")

    # TRANSFERS
    transfer_in_flight_ttl_seconds: float = Field(120.0, alias="TRANSFER_IN_FLIGHT_TTL_SECONDS")
    transfer_in_flight_wait_seconds: float = Field(30.0, alias="TRANSFER_IN_FLIGHT_WAIT_SECONDS")

    @model_validator(mode="after")
    def assemble_db_urls(self) -> "Settings":
        if not self.database_url:
            user = quote_plus(self.postgres_user)
            password = quote_plus(self.postgres_password.get_secret_value())
            host = self.postgres_server
            port = self.postgres_port
            db = self.postgres_db

            self.database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"

        if not self.sync_database_url:
            user = quote_plus(self.postgres_user)
            password = quote_plus(self.postgres_password.get_secret_value())
            host = self.postgres_server
            port = self.postgres_port
            db = self.postgres_db

            self.sync_database_url = f"postgresql://{user}:{password}@{host}:{port}/{db}"

        return self

    def chain(self, chain_key: str) -> ChainSettings:
        try:
            prefix = _CHAIN_ENV_PREFIX[chain_key.upper()]
        except KeyError:
            raise ValueError(f"Unknown chain key: {chain_key!r}")
        return ChainSettings(_env_prefix=prefix)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings: Settings = Settings()
