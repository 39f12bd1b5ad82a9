import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from jobportal.core.paths import resolve_repo_path


def _env_files() -> list[str]:
    base = resolve_repo_path(".env")
    env = os.getenv("JP_ENVIRONMENT", "").strip().lower()
    files = [str(base)]
    if env and env != "development":
        files.append(str(resolve_repo_path(f".env.{env}")))
    else:
        files.append(str(resolve_repo_path(".env.local")))
    return files


class Settings(BaseSettings):
    app_name: str = "Job Portal Intake"
    environment: str = "development"

    database_url: str

    auth_mode: Literal["dev", "google"] = "dev"
    google_client_id: str = ""
    google_application_credentials: str = "secrets/google-service-account.json"
    google_clock_skew_seconds: int = 180
    admin_emails: str = ""
    admin_api_key: str = ""
    admin_api_allow_localhost: bool = True

    apply_rate_limit_per_min: int = 30
    apply_rate_limit_window_seconds: int = 60

    storage_backend: Literal["local", "drive"] = "local"
    local_storage_root: str = "local_uploads/jobportal"
    drive_root_folder_id: str = ""

    public_app_origin: str = ""
    public_app_base_path: str = ""
    link_signing_key: str = "change-me"
    signed_url_ttl_seconds: int = 3600

    application_step_count: Literal[3, 4] = 3
    upload_timeout_seconds: float = 30.0
    read_timeout_seconds: float = 2.0
    read_retries: int = 2
    read_retry_backoff_seconds: float = 2.0

    # Empty keeps admin notifications in-process.
    redis_url: str = ""
    notification_channel: str = "jp:applications"

    cleanup_interval_minutes: int = 15
    # Local/dev convenience; production schemas are managed out of band.
    auto_create_schema: bool = False

    model_config = SettingsConfigDict(env_prefix="JP_", env_file=_env_files(), extra="ignore")


settings = Settings()
