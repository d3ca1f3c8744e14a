"""OpenAI chat-completions client and the helpers that configure it.

The generation services never talk to the SDK directly: they ask
:func:`get_text_generator` for an object exposing ``generate_response`` and
``stream_response``. Tests install a fake through
``app.config["_TEXT_GENERATOR_INSTANCE"]`` or by monkeypatching the factory.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import openai
from flask import current_app

from .errors import ConfigurationError, MissingCredentialsError

LOGGER = logging.getLogger(__name__)

PROMPT_CACHE_KEY = "_PROMPT_CONFIG_CACHE"
GENERATOR_INSTANCE_KEY = "_TEXT_GENERATOR_INSTANCE"


class OpenAIChatGenerator:
    """Thin wrapper over the Chat Completions API with one user-role message per call.

    Compatible with OpenAI Python SDK >= 1.0.
    """

    def __init__(self, model_name: str, api_key: str, default_max_tokens: int = 4000) -> None:
        self.model_name = (model_name or "").strip()
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise MissingCredentialsError("OPENAI_API_KEY no está configurada")
        if not self.model_name:
            raise MissingCredentialsError("LLM_MODEL no está configurado")
        self.default_max_tokens = int(default_max_tokens or 4000)
        self._client = openai.OpenAI(api_key=self.api_key)

    # ---------------- public API ----------------
    def generate_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        kwargs = self._build_kwargs(prompt, max_new_tokens, temperature, top_p)
        resp = self._client.chat.completions.create(**kwargs)
        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        snippet = self._shorten_debug(str(resp))
        raise RuntimeError(f"Chat completion returned no text. Raw response (truncated): {snippet}")

    def stream_response(
        self,
        prompt: str,
        *,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> Iterator[str]:
        """Yield text deltas in arrival order."""

        kwargs = self._build_kwargs(prompt, max_new_tokens, temperature, top_p)
        kwargs["stream"] = True
        stream = self._client.chat.completions.create(**kwargs)
        for chunk in stream:
            if (
                chunk.choices
                and len(chunk.choices) > 0
                and chunk.choices[0].delta
                and chunk.choices[0].delta.content is not None
            ):
                yield chunk.choices[0].delta.content

    # ---------------- internals ----------------
    def _build_kwargs(
        self,
        prompt: str,
        max_new_tokens: Optional[int],
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> Dict[str, Any]:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "n": 1,
        }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)
        return kwargs

    def _extract_text_from_chat(self, resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        if isinstance(msg, dict):
            content = msg.get("content")
        else:
            content = getattr(msg, "content", None)
        if isinstance(content, list):
            parts: List[str] = []
            for p in content:
                if isinstance(p, dict) and p.get("type") == "text":
                    parts.append(str(p.get("text") or ""))
            return "\n".join([p for p in parts if p])
        return str(content or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s


def get_text_generator(model: Optional[str] = None) -> Any:
    """Return the configured generator, building and caching the OpenAI client on first use.

    A missing API key is a hard configuration error surfaced to the caller.
    """

    app = current_app
    installed = app.config.get(GENERATOR_INSTANCE_KEY)
    if installed is not None and (model is None or getattr(installed, "model_name", model) == model):
        return installed

    api_key = app.config.get("OPENAI_API_KEY")
    if not api_key:
        raise MissingCredentialsError("OPENAI_API_KEY no está configurada")

    model_name = model or app.config.get("LLM_MODEL")
    app.logger.info("Initialising OpenAI chat generator for model: %s", model_name)
    generator = OpenAIChatGenerator(model_name=model_name, api_key=api_key)
    if model is None:
        app.config[GENERATOR_INSTANCE_KEY] = generator
    return generator


def load_prompt_entry(key: str) -> Dict[str, Any]:
    config = _load_prompt_config()
    entry = config.get(key, {})
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Prompt configuration entry '{key}' must be a dictionary.")
    return entry


def _load_prompt_config() -> Dict[str, Any]:
    app = current_app
    cached = app.config.get(PROMPT_CACHE_KEY)
    if isinstance(cached, dict):
        return cached

    config_path = app.config.get("PROMPT_CONFIG_PATH")
    path = Path(config_path) if config_path else None
    if path is None or not path.exists():
        LOGGER.info("Prompt configuration not found at %s; using default generation parameters.", path)
        data: Dict[str, Any] = {}
    else:
        with path.open("r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Unable to parse prompt configuration: {exc.msg}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("Prompt configuration must be a JSON object.")

    app.config[PROMPT_CACHE_KEY] = data
    return data


_GENERATION_PARAMETER_KEYS = {
    "max_new_tokens",
    "temperature",
    "top_p",
}


def extract_generation_parameters(parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Filter a raw parameters dictionary to generation kwargs supported by the client."""

    if not isinstance(parameters, dict):
        return {}

    kwargs: Dict[str, Any] = {}
    for key in _GENERATION_PARAMETER_KEYS:
        if key in parameters and parameters[key] is not None:
            kwargs[key] = parameters[key]
    return kwargs


def generation_parameters_for(stage: str) -> Dict[str, Any]:
    return extract_generation_parameters(load_prompt_entry(stage).get("parameters"))
