from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "Chat Stream"
    debug: bool = False

    # Paths
    db_path: Path = Path(__file__).resolve().parent.parent.parent / "chatstream.db"

    # Providers
    gemini_api_key: str = ""
    openai_api_key: str = ""
    default_provider: str = "google"  # google | openai
    default_model: str = "gemini-2.0-flash"
    automatic_model_selection: bool = False

    # Conversation
    user_id: int = 1
    history_limit: int = 20
    title_max_chars: int = 50
    system_prompt: str = (
        "You are a friendly, knowledgeable health and wellness coach. "
        "Answer clearly and concisely."
    )

    # Background post-processing
    background_workers: int = 1
    background_queue_size: int = 100
    memory_detection_enabled: bool = True
    nutrition_inference_enabled: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "CHATSTREAM_",
    }


settings = Settings()
