from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_path: str = "./data/cinefind.db"
    web_port: int = 8080
    log_level: str = "INFO"
    youtube_api_key: str = ""
    youtube_api_url: str = "https://www.googleapis.com/youtube/v3"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4.1-mini"
    fcm_project_id: str = ""
    fcm_access_token: str = ""
    notifications_enabled: bool = True
    http_timeout_seconds: float = 10.0
    suggestion_min_duration_seconds: int = 300

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def fcm_send_url(self) -> str:
        """Get the FCM HTTP v1 send endpoint for the configured project."""
        return f"https://fcm.googleapis.com/v1/projects/{self.fcm_project_id}/messages:send"

    @property
    def push_configured(self) -> bool:
        return bool(self.fcm_project_id and self.fcm_access_token)

    @property
    def database_path_resolved(self) -> Path:
        """Get resolved database path."""
        path = Path(self.database_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()
