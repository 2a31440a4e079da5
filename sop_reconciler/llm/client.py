"""Language model capability backed by Ollama through LangChain."""

from functools import lru_cache
from typing import Any, Optional, Protocol, runtime_checkable

import structlog
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama import OllamaEmbeddings, OllamaLLM
from pydantic_settings import BaseSettings, SettingsConfigDict
from tenacity import Retrying, stop_after_attempt, wait_exponential

from sop_reconciler.errors import ConfigurationError, ModelError, SchemaError
from sop_reconciler.llm.chains import parse_json_response

logger = structlog.get_logger(__name__)


class LLMSettings(BaseSettings):
    """LLM configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    ollama_base_url: str = "http://localhost:11434"
    model_name: str = "qwen2.5:14b-instruct"
    fallback_model_name: Optional[str] = None  # Used when primary returns empty
    embedding_model: Optional[str] = "bge-m3"
    temperature: float = 0.2
    request_timeout: int = 180
    num_ctx: int = 16384  # Chunk of 12000 chars plus prompt overhead
    num_predict: int = 8192  # Max tokens to generate
    json_mode: bool = True
    max_retries: int = 3


@lru_cache
def get_llm_settings() -> LLMSettings:
    """Get cached LLM settings."""
    return LLMSettings()


@runtime_checkable
class LanguageModel(Protocol):
    """Contract every pipeline component depends on.

    ``complete_json`` returns the parsed JSON object or raises ``ModelError``
    (transport) / ``SchemaError`` (unparseable output). ``embed`` is optional;
    check ``supports_embeddings`` before calling it.
    """

    supports_embeddings: bool

    def complete_json(
        self, system_prompt: str, user_prompt: str, context_name: str = "llm"
    ) -> dict[str, Any]: ...

    def embed(self, text: str) -> list[float]: ...


# Prompts are rendered before they reach the chain, so they are passed as
# variables and never re-parsed as templates.
_PASSTHROUGH_PROMPT = ChatPromptTemplate.from_messages([
    ("system", "{system_prompt}"),
    ("human", "{user_prompt}"),
])


class OllamaLanguageModel:
    """LanguageModel implementation using a local Ollama server.

    Retries (tenacity, exponential backoff) live here, inside the capability;
    the pipeline itself never retries.
    """

    def __init__(self, settings: LLMSettings | None = None):
        self.settings = settings or get_llm_settings()

        if not self.settings.model_name:
            raise ConfigurationError("LLM_MODEL_NAME is not configured")
        if not self.settings.ollama_base_url:
            raise ConfigurationError("LLM_OLLAMA_BASE_URL is not configured")

        self._llm = self._create_client(self.settings.model_name)
        self._fallback_llm = (
            self._create_client(self.settings.fallback_model_name)
            if self.settings.fallback_model_name
            else None
        )
        self._embeddings = (
            OllamaEmbeddings(
                model=self.settings.embedding_model,
                base_url=self.settings.ollama_base_url,
            )
            if self.settings.embedding_model
            else None
        )

    @property
    def supports_embeddings(self) -> bool:
        return self._embeddings is not None

    def _create_client(self, model: str) -> OllamaLLM:
        return OllamaLLM(
            model=model,
            base_url=self.settings.ollama_base_url,
            temperature=self.settings.temperature,
            num_ctx=self.settings.num_ctx,
            num_predict=self.settings.num_predict,
            format="json" if self.settings.json_mode else "",
            client_kwargs={"timeout": self.settings.request_timeout},
        )

    def complete_json(
        self, system_prompt: str, user_prompt: str, context_name: str = "llm"
    ) -> dict[str, Any]:
        """Run one prompt and return the parsed JSON object.

        Raises:
            ModelError: Transport failure or empty answers from every model.
            SchemaError: The answer contains no JSON object.
        """
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.settings.max_retries)),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            reraise=True,
        )
        return retrying(self._complete_once, system_prompt, user_prompt, context_name)

    def _complete_once(
        self, system_prompt: str, user_prompt: str, context_name: str
    ) -> dict[str, Any]:
        response, model_used = self._invoke_with_fallback(
            variables={"system_prompt": system_prompt, "user_prompt": user_prompt},
            context_name=context_name,
        )

        result = parse_json_response(response)
        if not isinstance(result, dict):
            raise SchemaError(f"{context_name}: expected a JSON object, got {type(result).__name__}")

        logger.debug(f"{context_name}_complete", model_used=model_used, keys=sorted(result))
        return result

    def _invoke_with_fallback(
        self, variables: dict, context_name: str
    ) -> tuple[str, str]:
        """Invoke the primary model, falling back on an empty response."""
        primary_model = self.settings.model_name
        chain = _PASSTHROUGH_PROMPT | self._llm | StrOutputParser()

        logger.debug(f"{context_name}_trying_primary", model=primary_model)
        try:
            response = chain.invoke(variables)
        except Exception as e:
            logger.error(f"{context_name}_invocation_failed", model=primary_model, error=str(e))
            raise ModelError(f"{context_name}: model call failed: {e}") from e

        if response and response.strip():
            return response, primary_model

        if self._fallback_llm is None:
            raise ModelError(f"{context_name}: {primary_model} returned an empty response")

        fallback_model = self.settings.fallback_model_name
        logger.warning(
            f"{context_name}_primary_empty_trying_fallback",
            primary_model=primary_model,
            fallback_model=fallback_model,
        )

        chain_fallback = _PASSTHROUGH_PROMPT | self._fallback_llm | StrOutputParser()
        try:
            response = chain_fallback.invoke(variables)
        except Exception as e:
            raise ModelError(f"{context_name}: fallback model call failed: {e}") from e

        if response and response.strip():
            logger.info(f"{context_name}_fallback_success", model=fallback_model, length=len(response))
            return response, fallback_model

        raise ModelError(
            f"Both primary ({primary_model}) and fallback ({fallback_model}) returned empty responses"
        )

    def embed(self, text: str) -> list[float]:
        """Embed text with the configured embedding model."""
        if self._embeddings is None:
            raise ConfigurationError("LLM_EMBEDDING_MODEL is not configured")
        try:
            return self._embeddings.embed_query(text)
        except Exception as e:
            logger.error("embedding_failed", error=str(e))
            raise ModelError(f"Embedding failed: {e}") from e
