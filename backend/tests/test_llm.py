import pytest

from response_insights.core.config import Settings
from response_insights.core.errors import ConfigurationError, ProviderError
from response_insights.core.llm import LLMConfig, LLMManager, LLMProvider


def test_invalid_provider_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        LLMManager.load_config(Settings(LLM_PROVIDER="bogus", _env_file=None))


def test_gemini_config_uses_default_model():
    config = LLMManager.load_config(Settings(LLM_PROVIDER="gemini", GOOGLE_API_KEY="key", _env_file=None))

    assert config.provider == LLMProvider.GEMINI
    assert config.model == LLMManager.DEFAULT_MODELS[LLMProvider.GEMINI]
    assert config.api_key == "key"


def test_azure_config_uses_deployment_as_model():
    config = LLMManager.load_config(
        Settings(LLM_PROVIDER="azure", AZURE_DEPLOYMENT_NAME="my-gpt", _env_file=None)
    )

    assert config.model == "my-gpt"
    assert config.deployment_name == "my-gpt"


@pytest.mark.parametrize("config", [
    LLMConfig(provider=LLMProvider.OPENAI, model="gpt-4o-mini"),
    LLMConfig(provider=LLMProvider.GEMINI, model="gemini-2.5-flash"),
    LLMConfig(provider=LLMProvider.AZURE, model="gpt-4o", api_key="key"),
])
def test_missing_credentials_are_rejected(config):
    with pytest.raises(ConfigurationError):
        LLMManager(config)


class _Reply:
    def __init__(self, content):
        self.content = content


class _StubChatModel:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.received = None

    def invoke(self, messages):
        self.received = messages
        if self.error:
            raise self.error
        return _Reply(self.reply)


def _manager_with(llm):
    manager = LLMManager.__new__(LLMManager)
    manager.config = LLMConfig(provider=LLMProvider.OPENAI, model="gpt-4o-mini")
    manager.llm = llm
    return manager


def test_get_response_returns_content_and_maps_roles():
    llm = _StubChatModel(reply="{}")
    manager = _manager_with(llm)

    reply = manager.get_response([
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Hello"},
        {"role": "assistant", "content": "Hi"},
    ])

    assert reply == "{}"
    assert [type(m).__name__ for m in llm.received] == ["SystemMessage", "HumanMessage", "AIMessage"]


def test_get_response_wraps_failures():
    manager = _manager_with(_StubChatModel(error=TimeoutError("timed out")))

    with pytest.raises(ProviderError):
        manager.get_response([{"role": "user", "content": "Hello"}])
