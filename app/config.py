from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./app.db"

    # Google OAuth (sign up with Google)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/api/auth/google/callback"

    # JWT
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days

    # Frontend URL for CORS and OAuth redirect
    frontend_url: str = "http://localhost:3000"

    # Gemini: API key (Developer API) takes precedence; empty = Vertex AI
    gemini_api_key: str = ""
    vertex_project_id: str = ""
    vertex_location: str = "us-central1"
    vertex_credentials_path: str = ""  # path to service account JSON; empty = use ADC
    gemini_model: str = "gemini-2.5-flash"

    # Conversations
    chat_list_limit: int = 50
    title_max_length: int = 50
    last_message_preview_length: int = 100

    # Learning context sliding windows (Socratic persona)
    previous_questions_window: int = 5
    user_insights_window: int = 10

    # Cookie holding the pseudo-identity of signed-out users
    anonymous_cookie_name: str = "tutor_anon_id"
    anonymous_cookie_max_age_days: int = 365

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
