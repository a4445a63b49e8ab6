import logging
from typing import List, Dict, Optional, Union
from dataclasses import dataclass
from enum import Enum

from response_insights.core.config import settings, Settings
from response_insights.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    GEMINI = "gemini"
    AZURE = "azure"
    OPENAI = "openai"
    OLLAMA = "ollama"


@dataclass
class LLMConfig:
    """Configuration for LLM providers."""
    provider: LLMProvider
    model: str
    temperature: float = 0.2
    max_tokens: Optional[int] = None
    timeout: int = 30

    # Provider-specific configs
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    api_version: Optional[str] = None
    deployment_name: Optional[str] = None
    credentials_path: Optional[str] = None


class LLMManager:
    """
    Chat LLM interface used to extract sentiment and candidate insights from
    free-text responses. LangChain chat models are the abstraction layer, so
    switching between Gemini, Azure, OpenAI and Ollama is a settings change.
    """

    DEFAULT_MODELS = {
        LLMProvider.GEMINI: "gemini-2.5-flash",
        LLMProvider.AZURE: "gpt-4o",
        LLMProvider.OPENAI: "gpt-4o-mini",
        LLMProvider.OLLAMA: "llama3",
    }

    def __init__(self, config: LLMConfig):
        self.config = config
        logger.debug(f"LLMManager: Initializing with provider: {self.config.provider.value}, model: {self.config.model}")
        try:
            self._validate_config()
            self.llm = self._initialize_llm()
        except Exception as e:
            logger.critical(f"LLMManager: Initialization failed: {e}")
            raise

    @classmethod
    def from_settings(cls, app_settings: Settings = settings) -> "LLMManager":
        """Create an LLMManager from application settings."""
        return cls(cls.load_config(app_settings))

    @classmethod
    def load_config(cls, app_settings: Settings = settings) -> LLMConfig:
        provider_str = app_settings.LLM_PROVIDER or "gemini"
        try:
            provider_enum = LLMProvider(provider_str.lower())
        except ValueError as e:
            valid_providers = [p.value for p in LLMProvider]
            raise ConfigurationError(
                f"Invalid LLM_PROVIDER: {provider_str}. "
                f"Valid options: {valid_providers}"
            ) from e

        common = dict(
            temperature=app_settings.LLM_TEMPERATURE,
            max_tokens=app_settings.LLM_MAX_TOKENS,
            timeout=app_settings.LLM_TIMEOUT,
        )
        if provider_enum == LLMProvider.GEMINI:
            return LLMConfig(
                provider=provider_enum,
                model=app_settings.GEMINI_MODEL or cls.DEFAULT_MODELS[provider_enum],
                api_key=app_settings.GOOGLE_API_KEY,
                credentials_path=app_settings.GOOGLE_APPLICATION_CREDENTIALS,
                **common
            )
        if provider_enum == LLMProvider.AZURE:
            deployment_name = app_settings.AZURE_DEPLOYMENT_NAME or cls.DEFAULT_MODELS[provider_enum]
            return LLMConfig(
                provider=provider_enum,
                model=deployment_name,
                api_key=app_settings.AZURE_OPENAI_KEY,
                api_base=app_settings.AZURE_OPENAI_BASE,
                api_version=app_settings.AZURE_API_VERSION,
                deployment_name=deployment_name,
                **common
            )
        if provider_enum == LLMProvider.OPENAI:
            return LLMConfig(
                provider=provider_enum,
                model=app_settings.OPENAI_MODEL or cls.DEFAULT_MODELS[provider_enum],
                api_key=app_settings.OPENAI_API_KEY,
                api_base=app_settings.OPENAI_API_BASE or "https://api.openai.com/v1",
                **common
            )
        return LLMConfig(
            provider=provider_enum,
            model=app_settings.OLLAMA_MODEL or cls.DEFAULT_MODELS[provider_enum],
            api_base=app_settings.OLLAMA_BASE_URL or "http://localhost:11434",
            **common
        )

    def _validate_config(self) -> None:
        """Validate the current configuration."""
        if self.config.provider == LLMProvider.GEMINI:
            if not (self.config.api_key or self.config.credentials_path):
                raise ConfigurationError("Gemini requires either GOOGLE_API_KEY or GOOGLE_APPLICATION_CREDENTIALS.")
        elif self.config.provider == LLMProvider.AZURE:
            missing = [var for var in ["api_key", "api_base", "api_version", "deployment_name"] if not getattr(self.config, var)]
            if missing:
                raise ConfigurationError(f"Missing required Azure config: {missing}")
        elif self.config.provider == LLMProvider.OPENAI:
            if not self.config.api_key:
                raise ConfigurationError("OpenAI requires OPENAI_API_KEY.")
        elif self.config.provider == LLMProvider.OLLAMA:
            if not self.config.api_base:
                raise ConfigurationError("Ollama requires OLLAMA_BASE_URL.")

    def _initialize_llm(self):
        """Initialize the appropriate LangChain chat client."""
        # Provider packages are imported here so only the selected one has to be installed.
        try:
            if self.config.provider == LLMProvider.GEMINI:
                from langchain_google_genai import ChatGoogleGenerativeAI
                return ChatGoogleGenerativeAI(model=self.config.model, temperature=self.config.temperature, google_api_key=self.config.api_key, max_output_tokens=self.config.max_tokens, timeout=self.config.timeout)
            elif self.config.provider == LLMProvider.AZURE:
                from langchain_openai import AzureChatOpenAI
                return AzureChatOpenAI(azure_deployment=self.config.deployment_name, openai_api_version=self.config.api_version, azure_endpoint=self.config.api_base, api_key=self.config.api_key, temperature=self.config.temperature, max_tokens=self.config.max_tokens, timeout=self.config.timeout)
            elif self.config.provider == LLMProvider.OPENAI:
                from langchain_openai import ChatOpenAI
                return ChatOpenAI(model=self.config.model, api_key=self.config.api_key, base_url=self.config.api_base, temperature=self.config.temperature, max_tokens=self.config.max_tokens, timeout=self.config.timeout)
            else:
                from langchain_community.chat_models import ChatOllama
                return ChatOllama(model=self.config.model, base_url=self.config.api_base, temperature=self.config.temperature)
        except ImportError as e:
            raise ConfigurationError(
                f"LangChain package for provider '{self.config.provider.value}' is not installed: {e}"
            ) from e
        except Exception as e:
            raise ConfigurationError(f"Failed to initialize {self.config.provider.value} LLM: {e}") from e

    def _format_messages(self, messages: List[Dict[str, str]]):
        """Convert message dictionaries to LangChain message objects."""
        from langchain_core.messages import HumanMessage, SystemMessage, AIMessage

        formatted_messages: List[Union[HumanMessage, SystemMessage, AIMessage]] = []
        for msg in messages:
            role, content = msg.get("role", "").lower(), msg.get("content", "")
            if role == "system":
                formatted_messages.append(SystemMessage(content=content))
            elif role in ("assistant", "ai"):
                formatted_messages.append(AIMessage(content=content))
            else:
                if role not in ("user", "human"):
                    logger.warning(f"LLMManager: Unknown message role: {role}, treating as human.")
                formatted_messages.append(HumanMessage(content=content))
        return formatted_messages

    def get_response(self, messages: List[Dict[str, str]]) -> str:
        """Get response from the configured LLM."""
        try:
            formatted_messages = self._format_messages(messages)
            logger.info(f"LLMManager: Calling {self.config.provider.value} with {len(messages)} messages.")
            response = self.llm.invoke(formatted_messages)
            logger.info(f"LLMManager: Received response from {self.config.provider.value}. Content length: {len(response.content)}")
            return response.content
        except Exception as e:
            error_msg = f"{self.config.provider.value} call failed: {str(e)}"
            logger.error(f"LLMManager: {error_msg}")
            raise ProviderError(error_msg) from e
