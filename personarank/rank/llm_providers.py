"""
LLM completion with cross-model fallback.

All models are reached through OpenAI-compatible chat completion
endpoints using the ``openai`` SDK.  The provider family is chosen by
model name: names starting with ``gemini`` go to Google's Gemini
endpoint, everything else goes to Groq.

:class:`CompletionClient` walks an ordered model list.  The requested
model is always tried first.  When it belongs to the Gemini family the
list is restricted to Gemini models (strict mode: the client never
silently switches a Gemini request to another vendor); otherwise all
Groq models are tried followed by all Gemini models.  A failure whose
:class:`~personarank.errors.ErrorKind` is retryable moves on to the next
model; any other failure propagates immediately.  When the list is
exhausted a single :class:`~personarank.errors.ProvidersExhaustedError`
is raised with a diagnosis specific to the provider family.

API keys are resolved per call by :class:`CredentialResolver` from an
immutable :class:`CredentialContext`: a per-session key wins over a key
stored for the model, which wins over the environment default.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

import openai

from .. import constants
from ..config import Settings
from ..errors import ProviderCallError, ProvidersExhaustedError, is_retryable

logger = logging.getLogger(__name__)

Message = Dict[str, str]


@dataclass
class Completion:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def cost(self) -> float:
        return estimate_cost(self.model, self.input_tokens, self.output_tokens)


def is_gemini_model(model: str) -> bool:
    return model.startswith(constants.GEMINI_MODEL_PREFIX)


def provider_family(model: str) -> str:
    """Key used for session/env credentials: ``"gemini"`` or ``"groq"``."""
    return "gemini" if is_gemini_model(model) else "groq"


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Rough USD cost of a call, for tracking only."""
    input_price, output_price = constants.MODEL_PRICING.get(model, constants.DEFAULT_PRICING)
    return (input_tokens / 1000.0) * input_price + (output_tokens / 1000.0) * output_price


def fallback_models(model: str, groq_models: List[str], gemini_models: List[str]) -> List[str]:
    """Ordered, de-duplicated list of models to try for ``model``."""
    pool = list(gemini_models) if is_gemini_model(model) else list(groq_models) + list(gemini_models)
    ordered: List[str] = []
    for name in [model] + pool:
        if name and name not in ordered:
            ordered.append(name)
    return ordered


def _frozen(mapping: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class CredentialContext:
    """Credentials available to one call.

    ``session_keys`` and ``env_keys`` are keyed by provider family
    (``"groq"``/``"gemini"``); ``stored_keys`` by model name.
    """

    session_keys: Mapping[str, str] = field(default_factory=dict)
    stored_keys: Mapping[str, str] = field(default_factory=dict)
    env_keys: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "session_keys", _frozen(self.session_keys))
        object.__setattr__(self, "stored_keys", _frozen(self.stored_keys))
        object.__setattr__(self, "env_keys", _frozen(self.env_keys))


class CredentialResolver:
    """Pick the API key and base URL for a model from a :class:`CredentialContext`."""

    def __init__(self, gemini_base_url: str = constants.GEMINI_BASE_URL, groq_base_url: str = constants.GROQ_BASE_URL) -> None:
        self.gemini_base_url = gemini_base_url
        self.groq_base_url = groq_base_url

    def base_url(self, model: str) -> str:
        return self.gemini_base_url if is_gemini_model(model) else self.groq_base_url

    def api_key(self, model: str, context: CredentialContext) -> Optional[str]:
        family = provider_family(model)
        return (
            context.session_keys.get(family)
            or context.stored_keys.get(model)
            or context.env_keys.get(family)
        )


class ChatTransport(ABC):
    """One chat completion against an OpenAI-compatible endpoint."""

    @abstractmethod
    async def create(
        self,
        *,
        model: str,
        messages: List[Message],
        api_key: str,
        base_url: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> Completion:
        """Return the completion or raise :class:`ProviderCallError`."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release any pooled connections."""


class OpenAITransport(ChatTransport):
    """Transport backed by ``openai.AsyncOpenAI``."""

    def __init__(self, timeout: float = 120.0) -> None:
        self.timeout = timeout
        self._clients: Dict[Tuple[str, str], openai.AsyncOpenAI] = {}

    def _client(self, api_key: str, base_url: str) -> openai.AsyncOpenAI:
        key = (base_url, api_key)
        if key not in self._clients:
            # Fallback is handled by CompletionClient, so disable SDK retries
            self._clients[key] = openai.AsyncOpenAI(
                api_key=api_key, base_url=base_url, timeout=self.timeout, max_retries=0
            )
        return self._clients[key]

    async def create(
        self,
        *,
        model: str,
        messages: List[Message],
        api_key: str,
        base_url: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> Completion:
        kwargs: Dict[str, object] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client(api_key, base_url).chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            raise ProviderCallError(str(exc), status_code=exc.status_code, model=model) from exc
        except (openai.APIConnectionError, openai.APITimeoutError) as exc:
            raise ProviderCallError(str(exc), status_code=503, model=model) from exc
        except openai.APIError as exc:
            # e.g. a 200 response whose body fails validation
            raise ProviderCallError(str(exc), model=model) from exc
        text = response.choices[0].message.content if response.choices else ""
        usage = response.usage
        return Completion(
            text=text or "",
            model=model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.close()


CallHook = Callable[[str, Completion, Mapping[str, object]], Awaitable[None]]


def _exhaustion_message(requested: str, attempted: List[str], last: Optional[ProviderCallError]) -> str:
    status = last.status_code if last else None
    last_message = (last.message if last else "")[:150]
    if not is_gemini_model(requested):
        return f"All {len(attempted)} models exhausted. Last error: {last_message}"
    if status == 429:
        return "Gemini Rate Limit: Quota exceeded. Check billing at https://ai.google.dev/usage"
    if status == 401:
        return "Gemini Auth Failed: Invalid API key. Check key at https://aistudio.google.com/app/apikey"
    if status == 404:
        return f"Gemini Model Not Found: '{requested}' unavailable. Try gemini-2.5-flash or gemini-2.0-flash"
    return f"Gemini Error: All {len(attempted)} models failed. Last: {last_message}"


class CompletionClient:
    """Chat completion with ordered model fallback."""

    def __init__(
        self,
        transport: Optional[ChatTransport] = None,
        settings: Optional[Settings] = None,
        resolver: Optional[CredentialResolver] = None,
        on_call: Optional[CallHook] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.transport = transport or OpenAITransport()
        self.resolver = resolver or CredentialResolver(self.settings.gemini_base_url, self.settings.groq_base_url)
        self.on_call = on_call

    def models_for(self, model: str) -> List[str]:
        return fallback_models(model, self.settings.groq_models, self.settings.gemini_models)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def complete(
        self,
        messages: List[Message],
        *,
        model: Optional[str] = None,
        temperature: float = constants.RANKING_TEMPERATURE,
        max_tokens: Optional[int] = None,
        credentials: Optional[CredentialContext] = None,
        json_mode: bool = True,
        call_type: str = "ranking",
        metadata: Optional[Mapping[str, object]] = None,
    ) -> Completion:
        """Run one completion, falling back across models on retryable errors.

        Raises:
            ProviderCallError: on the first non-retryable failure.
            ProvidersExhaustedError: when every model failed.
        """
        requested = model or self.settings.model
        context = credentials or CredentialContext(env_keys=self.settings.env_keys())
        attempted = self.models_for(requested)
        last_error: Optional[ProviderCallError] = None

        for index, candidate_model in enumerate(attempted):
            if index > 0:
                logger.info("Fallback attempt %d/%d: %s", index, len(attempted) - 1, candidate_model)
            api_key = self.resolver.api_key(candidate_model, context)
            try:
                if not api_key:
                    raise ProviderCallError(
                        f"No API key configured for {provider_family(candidate_model)}",
                        status_code=401,
                        model=candidate_model,
                    )
                completion = await self.transport.create(
                    model=candidate_model,
                    messages=messages,
                    api_key=api_key,
                    base_url=self.resolver.base_url(candidate_model),
                    temperature=temperature,
                    max_tokens=max_tokens or self.settings.max_tokens,
                    json_mode=json_mode,
                )
            except ProviderCallError as exc:
                if not is_retryable(exc.kind):
                    raise
                logger.warning("Model %s failed (status %s): %s", candidate_model, exc.status_code, exc.message[:100])
                last_error = exc
                continue
            if self.on_call is not None:
                await self.on_call(call_type, completion, metadata or {})
            return completion

        provider = "Gemini" if is_gemini_model(requested) else "Groq"
        message = _exhaustion_message(requested, attempted, last_error)
        logger.error("All models exhausted (%s, %d attempted): %s", provider, len(attempted), message)
        status = last_error.status_code if last_error and last_error.status_code else 429
        raise ProvidersExhaustedError(message, provider=provider, models_attempted=attempted, status=status)
