"""Language model capability and structured-output helpers."""

from .chains import parse_json_response, run_structured_call, validate_payload
from .client import LanguageModel, LLMSettings, OllamaLanguageModel, get_llm_settings

__all__ = [
    "LanguageModel",
    "LLMSettings",
    "OllamaLanguageModel",
    "get_llm_settings",
    "parse_json_response",
    "run_structured_call",
    "validate_payload",
]
