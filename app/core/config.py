from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    database_url: str
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    sql_echo: bool = False
    log_level: str = "INFO"

    # PostgreSQL variables for Docker
    postgres_user: str = ""
    postgres_password: str = ""
    postgres_db: str = ""

    # Хранилище файлов: "local" (диск) или "minio"
    storage_backend: str = "local"
    upload_dir: str = "uploaded_files"
    minio_endpoint: str = ""
    minio_access_key: str = ""
    minio_secret_key: str = ""
    minio_secure: bool = False
    contracts_bucket: str = "contracts"
    attachments_bucket: str = "license-attachments"
    signed_url_ttl_seconds: int = 60 * 60 * 24 * 7
    public_base_url: str = "http://localhost:8000"

    # Переговоры
    store_timeout_seconds: float = 10.0
    patch_retry_attempts: int = 5
    create_tables_on_startup: bool = True

    model_config = {"env_file": ".env", "extra": "ignore"}

settings = Settings()
