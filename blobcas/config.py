"""Configuration settings for blobcas."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: Path = Path("data")
    chunk_size: int = 1024 * 1024  # upload read size, 1 MiB

    # Listener
    host: str = "0.0.0.0"
    port: int = 2083

    # TLS
    use_https: bool = False
    ssl_key_path: Path = Path("ssl/private.key")
    ssl_cert_path: Path = Path("ssl/certificate.crt")
    ssl_ca_path: Path | None = None  # optional certificate chain

    # Any origin may call the API unless restricted
    cors_origins: list[str] = ["*"]

    log_level: str = "INFO"


settings = Settings()
