"""
Embedding provider for insight deduplication.

Turns the normalized text of an insight into a fixed-length vector. The
vector length is fixed by the provider's model and must stay constant for the
lifetime of the process, since stored insight vectors are compared against
new ones.
"""
import math
import logging
import threading
from typing import List, Optional, Sequence
from dataclasses import dataclass
from enum import Enum

from response_insights.core.config import settings, Settings
from response_insights.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


def get_insight_vector_text(title: str, description: str) -> str:
    """
    Canonical text embedded for an insight: "<title>: <description>".

    Every place that embeds or compares insight text must go through this
    function so that identical proposals map to comparable vectors.
    """
    return f"{title.strip()}: {description.strip()}"


class EmbeddingProvider(Enum):
    """Supported embedding providers."""
    LOCAL = "local"
    OPENAI = "openai"
    AZURE = "azure"
    GEMINI = "gemini"
    OLLAMA = "ollama"


@dataclass
class EmbeddingConfig:
    """Configuration for embedding providers."""
    provider: EmbeddingProvider
    model: str
    dimension: Optional[int] = None

    api_key: Optional[str] = None
    api_base: Optional[str] = None
    api_version: Optional[str] = None
    deployment_name: Optional[str] = None


class SentenceTransformerEmbeddings:
    """Runs a sentence-transformers model in-process behind the `embed_query` interface."""

    def __init__(self, model_name: str):
        from sentence_transformers import SentenceTransformer
        self.model = SentenceTransformer(model_name)

    def embed_query(self, text: str) -> List[float]:
        return self.model.encode(text).tolist()


class EmbeddingManager:
    """
    Unified embedding interface over a local sentence-transformers model and
    the LangChain embedding clients.

    Any client exposing `embed_query(text) -> list[float]` can be passed in
    directly; otherwise one is built from the configuration.
    """

    DEFAULT_MODELS = {
        EmbeddingProvider.LOCAL: "sentence-transformers/all-MiniLM-L6-v2",
        EmbeddingProvider.OPENAI: "text-embedding-3-small",
        EmbeddingProvider.AZURE: "text-embedding-3-small",
        EmbeddingProvider.GEMINI: "models/text-embedding-004",
        EmbeddingProvider.OLLAMA: "nomic-embed-text",
    }

    def __init__(self, config: EmbeddingConfig, client=None):
        self.config = config
        self._dimension: Optional[int] = config.dimension
        self._dimension_lock = threading.Lock()
        if client is not None:
            self.client = client
        else:
            self._validate_config()
            self.client = self._initialize_client()
        logger.info(f"EmbeddingManager: Ready with provider '{self.config.provider.value}', model '{self.config.model}'.")

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "EmbeddingManager":
        return cls(cls.load_config(app_settings))

    @classmethod
    def load_config(cls, app_settings: Settings = settings) -> EmbeddingConfig:
        provider_str = app_settings.EMBEDDING_PROVIDER or "local"
        try:
            provider_enum = EmbeddingProvider(provider_str.lower())
        except ValueError as e:
            valid_providers = [p.value for p in EmbeddingProvider]
            raise ConfigurationError(
                f"Invalid EMBEDDING_PROVIDER: {provider_str}. Valid options: {valid_providers}"
            ) from e

        model = app_settings.EMBEDDING_MODEL_NAME
        if provider_enum != EmbeddingProvider.LOCAL and (not model or model == cls.DEFAULT_MODELS[EmbeddingProvider.LOCAL]):
            # The default name is a sentence-transformers model; remote providers need their own.
            model = cls.DEFAULT_MODELS[provider_enum]

        config = EmbeddingConfig(provider=provider_enum, model=model, dimension=app_settings.EMBEDDING_DIMENSION)
        if provider_enum == EmbeddingProvider.OPENAI:
            config.api_key = app_settings.OPENAI_API_KEY
            config.api_base = app_settings.OPENAI_API_BASE
        elif provider_enum == EmbeddingProvider.AZURE:
            config.api_key = app_settings.AZURE_OPENAI_KEY
            config.api_base = app_settings.AZURE_OPENAI_BASE
            config.api_version = app_settings.AZURE_API_VERSION
            config.deployment_name = app_settings.AZURE_EMBEDDING_DEPLOYMENT or model
        elif provider_enum == EmbeddingProvider.GEMINI:
            config.api_key = app_settings.GOOGLE_API_KEY
        elif provider_enum == EmbeddingProvider.OLLAMA:
            config.api_base = app_settings.OLLAMA_BASE_URL or "http://localhost:11434"
        return config

    def _validate_config(self) -> None:
        if self.config.provider == EmbeddingProvider.OPENAI and not self.config.api_key:
            raise ConfigurationError("OpenAI embeddings require OPENAI_API_KEY.")
        if self.config.provider == EmbeddingProvider.AZURE:
            missing = [var for var in ["api_key", "api_base", "api_version", "deployment_name"] if not getattr(self.config, var)]
            if missing:
                raise ConfigurationError(f"Missing required Azure embedding config: {missing}")
        if self.config.provider == EmbeddingProvider.GEMINI and not self.config.api_key:
            raise ConfigurationError("Gemini embeddings require GOOGLE_API_KEY.")

    def _initialize_client(self):
        try:
            if self.config.provider == EmbeddingProvider.LOCAL:
                return SentenceTransformerEmbeddings(self.config.model)
            if self.config.provider == EmbeddingProvider.OPENAI:
                from langchain_openai import OpenAIEmbeddings
                return OpenAIEmbeddings(model=self.config.model, api_key=self.config.api_key, base_url=self.config.api_base)
            if self.config.provider == EmbeddingProvider.AZURE:
                from langchain_openai import AzureOpenAIEmbeddings
                return AzureOpenAIEmbeddings(azure_deployment=self.config.deployment_name, openai_api_version=self.config.api_version, azure_endpoint=self.config.api_base, api_key=self.config.api_key)
            if self.config.provider == EmbeddingProvider.GEMINI:
                from langchain_google_genai import GoogleGenerativeAIEmbeddings
                return GoogleGenerativeAIEmbeddings(model=self.config.model, google_api_key=self.config.api_key)
            from langchain_community.embeddings import OllamaEmbeddings
            return OllamaEmbeddings(model=self.config.model, base_url=self.config.api_base)
        except ImportError as e:
            raise ConfigurationError(
                f"Package for embedding provider '{self.config.provider.value}' is not installed: {e}"
            ) from e
        except Exception as e:
            raise ConfigurationError(f"Failed to initialize {self.config.provider.value} embeddings: {e}") from e

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def embed(self, text: str) -> List[float]:
        """
        Embed `text` into a vector of floats.

        Raises:
            ProviderError: If the provider call fails or returns malformed output.
        """
        try:
            raw = self.client.embed_query(text)
        except Exception as e:
            error_msg = f"{self.config.provider.value} embedding call failed: {str(e)}"
            logger.error(f"EmbeddingManager: {error_msg}")
            raise ProviderError(error_msg) from e
        return self._validate_vector(raw)

    def _validate_vector(self, raw: Sequence) -> List[float]:
        if raw is None or isinstance(raw, (str, bytes)):
            raise ProviderError(f"{self.config.provider.value} returned a malformed embedding: {type(raw).__name__}")
        try:
            vector = [float(x) for x in raw]
        except (TypeError, ValueError) as e:
            raise ProviderError(f"{self.config.provider.value} returned a non-numeric embedding.") from e
        if not vector:
            raise ProviderError(f"{self.config.provider.value} returned an empty embedding.")
        if not all(math.isfinite(x) for x in vector):
            raise ProviderError(f"{self.config.provider.value} returned an embedding with non-finite values.")

        with self._dimension_lock:
            if self._dimension is None:
                self._dimension = len(vector)
                logger.info(f"EmbeddingManager: Embedding dimension pinned to {self._dimension}.")
            elif len(vector) != self._dimension:
                raise ProviderError(
                    f"{self.config.provider.value} returned {len(vector)} dimensions, expected {self._dimension}."
                )
        return vector
