import os
from pydantic_settings import BaseSettings, SettingsConfigDict
from core.chain import ChainClient
from core.batch import MAX_BATCH_SIZE
from core.errors import ConfigurationError

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", arbitrary_types_allowed=True)

    rpc_url: str = "http://127.0.0.1:8545"
    private_key: str | None = None
    cipher_text: str | None = os.getenv("CIPHER_TEXT")
    token_address: str | None = None
    bulk_token_sender_address: str | None = None
    max_batch_size: int = MAX_BATCH_SIZE
    approve_amount: str | None = None
    tx_timeout: float = 180
    tx_poll_latency: float = 2.0
    decrypted_private_key: str | None = None
    chain: ChainClient | None = None

    JWT_SECRET_KEY: str | None = os.getenv("JWT_SECRET_KEY")
    JWT_ALGORITHM: str = 'HS256'
    MAX_USED_TOKENS: int = 1000

    @property
    def signing_key(self) -> str:
        key = self.private_key or self.decrypted_private_key
        if not key:
            raise ConfigurationError("No signing key: set PRIVATE_KEY or decrypt CIPHER_TEXT")
        return key

    def require_contracts(self) -> tuple[str, str]:
        if not self.token_address or not self.bulk_token_sender_address:
            raise ConfigurationError(
                "TOKEN_ADDRESS and BULK_TOKEN_SENDER_ADDRESS must both be set"
            )
        return self.token_address, self.bulk_token_sender_address

setting = Settings()
