from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import Anthropic
import google.generativeai as genai
from openai import OpenAI

from mailtree.config import settings


class LLMClientConfigError(Exception):
    pass


logger = logging.getLogger(__name__)
_DEFAULT_TIMEOUT = int(os.getenv("LLM_REQUEST_TIMEOUT", "120"))
_MAX_RETRIES = int(os.getenv("LLM_REQUEST_RETRIES", "2"))


@dataclass
class LLMGenerationParams:
    model: str
    max_tokens: Optional[int] = None
    temperature: float = 0.2
    response_format: Optional[dict[str, Any]] = None


class LLMClient:
    """
    Blocking text-generation client used by the refinement adapter.
    Routes to the provider SDK matching the requested model name.
    """

    def __init__(self, default_model: Optional[str] = None) -> None:
        self.default_model = default_model or settings.AI_PROVIDER_MODEL
        self._gemini_configured = False
        self._anthropic_client: Optional[Anthropic] = None
        self._openai_client: Optional[OpenAI] = None

    def generate_text(self, prompt: str, params: Optional[LLMGenerationParams] = None) -> str:
        model = params.model if params and params.model else self.default_model
        if self._is_openai_model(model):
            return self._generate_with_openai(prompt, model, params)
        if model.startswith("claude"):
            return self._generate_with_anthropic(prompt, model, params)
        return self._generate_with_gemini(prompt, model, params)

    def _is_openai_model(self, model: str) -> bool:
        lower = model.lower()
        prefixes = ("gpt-", "chatgpt-", "o1", "o3", "o4", "omni-")
        return any(lower.startswith(prefix) for prefix in prefixes)

    def _openai(self) -> OpenAI:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise LLMClientConfigError("OPENAI_API_KEY not configured")
        if not self._openai_client:
            client_kwargs: dict[str, Any] = {
                "api_key": api_key,
                "timeout": float(_DEFAULT_TIMEOUT),
                "max_retries": _MAX_RETRIES,
            }
            base_url = os.getenv("OPENAI_BASE_URL")
            if base_url:
                client_kwargs["base_url"] = base_url
            self._openai_client = OpenAI(**client_kwargs)
        return self._openai_client

    def _generate_with_openai(self, prompt: str, model: str, params: Optional[LLMGenerationParams]) -> str:
        client = self._openai()
        completion_kwargs: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if params is not None:
            completion_kwargs["temperature"] = params.temperature
            if params.max_tokens:
                completion_kwargs["max_tokens"] = params.max_tokens
            if params.response_format:
                completion_kwargs["response_format"] = params.response_format

        logger.info("llm.openai.request", extra={"model": model})
        try:
            completion = client.chat.completions.create(**completion_kwargs)
        except Exception:
            logger.exception("llm.openai.failed", extra={"model": model})
            raise

        text = None
        if completion and completion.choices:
            text = getattr(completion.choices[0].message, "content", None)
        if text:
            return text
        raise RuntimeError(f"OpenAI chat completion returned no content for model {model}")

    def _generate_with_gemini(self, prompt: str, model: str, params: Optional[LLMGenerationParams]) -> str:
        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise LLMClientConfigError("GEMINI_API_KEY not configured")

        if not self._gemini_configured:
            genai.configure(api_key=api_key)
            self._gemini_configured = True

        generation_config: dict[str, Any] = {
            "temperature": params.temperature if params else 0.2,
        }
        if params and params.max_tokens:
            generation_config["max_output_tokens"] = params.max_tokens
        if params and params.response_format and params.response_format.get("type") == "json_object":
            generation_config["response_mime_type"] = "application/json"

        model_name = model if model.startswith("models/") else f"models/{model}"
        model_client = genai.GenerativeModel(model_name=model_name, generation_config=generation_config)
        logger.info("llm.gemini.request", extra={"model": model})
        try:
            result = model_client.generate_content(prompt, request_options={"timeout": _DEFAULT_TIMEOUT})
            text = None
            if result and getattr(result, "candidates", None):
                first = result.candidates[0]
                if first and first.content and getattr(first.content, "parts", None):
                    parts = first.content.parts
                    if parts and getattr(parts[0], "text", None):
                        text = parts[0].text
            if not text and hasattr(result, "text"):
                text = result.text
        except Exception:
            logger.exception("llm.gemini.failed", extra={"model": model})
            raise

        if text:
            return text
        raise RuntimeError(f"Gemini returned no content for model {model}")

    def _generate_with_anthropic(self, prompt: str, model: str, params: Optional[LLMGenerationParams]) -> str:
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise LLMClientConfigError("ANTHROPIC_API_KEY not configured")

        if not self._anthropic_client:
            self._anthropic_client = Anthropic(api_key=api_key, max_retries=_MAX_RETRIES)

        max_tokens = params.max_tokens if params and params.max_tokens else 4096
        temperature = params.temperature if params else 0.2

        logger.info("llm.anthropic.request", extra={"model": model})
        try:
            response = self._anthropic_client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=_DEFAULT_TIMEOUT,
            )
        except Exception:
            logger.exception("llm.anthropic.failed", extra={"model": model})
            raise

        text_parts = [content.text for content in response.content if getattr(content, "text", None)]
        if text_parts:
            return "".join(text_parts)
        raise RuntimeError(f"Anthropic returned no content for model {model}")
