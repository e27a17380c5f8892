from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="AGILE_", extra="ignore")

    endpoint_url: str = "http://localhost:8080"
    username: str = ""
    password: str = ""
    request_timeout_seconds: float = 60.0
    piece_page_size: int = 100
    chunk_size_bytes: int = 5 * 1024 * 1024
    read_block_size: int = 64 * 1024
    tracing_enabled: bool = False
    tracing_service_name: str = "agile-upload-client"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True


settings = Settings()
