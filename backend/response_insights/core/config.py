import os
from pydantic_settings import BaseSettings
from typing import Optional

# Get the root path of the project (the 'backend' directory)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

class Settings(BaseSettings):
    """
    Pydantic settings class to manage application configuration.
    It automatically reads environment variables from a .env file.
    """
    # --- Core Application Settings ---
    PROJECT_NAME: str = "Response Insights API"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # --- Database Settings ---
    # The default URL points to a SQLite database file in the project's backend root.
    DATABASE_URL: str = f"sqlite:///{os.path.join(PROJECT_ROOT, 'app.db')}"

    # --- Embedding Settings ---
    # "local" runs a sentence-transformers model in-process; the other
    # providers go through their LangChain embedding clients.
    EMBEDDING_PROVIDER: str = "local"
    EMBEDDING_MODEL_NAME: str = "sentence-transformers/all-MiniLM-L6-v2"
    # Expected vector length. When unset, the first vector produced pins it.
    EMBEDDING_DIMENSION: Optional[int] = None

    # --- Insight Resolution Settings ---
    # Maximum cosine distance at which a candidate counts as the same topic
    # as an existing insight.
    INSIGHT_MERGE_MAX_DISTANCE: float = 0.35
    # Serialize find-nearest/create per environment inside this process.
    INSIGHT_SERIALIZE_PER_ENVIRONMENT: bool = False
    # Capability switch checked by the API before any extraction runs.
    AI_INSIGHTS_ENABLED: bool = True

    # --- Cache Settings ---
    CACHE_BACKEND: str = "memory"
    REDIS_URL: Optional[str] = None
    CACHE_TTL_SECONDS: int = 300

    # --- LLM Settings ---
    LLM_PROVIDER: str = "gemini"
    GEMINI_MODEL: Optional[str] = None
    LLM_TEMPERATURE: float = 0.2
    LLM_MAX_TOKENS: Optional[int] = None
    LLM_TIMEOUT: int = 30
    GOOGLE_API_KEY: Optional[str] = None
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    AZURE_OPENAI_KEY: Optional[str] = None
    AZURE_OPENAI_BASE: Optional[str] = None
    AZURE_API_VERSION: Optional[str] = None
    AZURE_DEPLOYMENT_NAME: Optional[str] = None
    AZURE_EMBEDDING_DEPLOYMENT: Optional[str] = None
    OPENAI_MODEL: Optional[str] = None
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE: Optional[str] = None
    OLLAMA_MODEL: Optional[str] = None
    OLLAMA_BASE_URL: Optional[str] = None

    class Config:
        """
        Pydantic config subclass to specify the .env file location.
        """
        env_file = os.path.join(PROJECT_ROOT, ".env")
        env_file_encoding = 'utf-8'
        extra = "ignore" # Allow extra fields from .env to be ignored

# Instantiate the settings object that will be used throughout the application.
settings = Settings()
