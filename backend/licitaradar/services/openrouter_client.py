"""OpenRouter chat-completions client shared by the classifier, edital analysis and chat."""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from licitaradar.core.config import get_settings
from licitaradar.core.errors import LLMNotConfigured, ModelProviderError
from licitaradar.models.schemas import ChatCompletion

logger = logging.getLogger(__name__)

# Substrings OpenRouter puts in error bodies when the upstream inference backend failed
PROVIDER_ERROR_SIGNATURES = (
    "Provider returned error",
    "unknown error in the model inference server",
)


def is_provider_failure(message: str) -> bool:
    return any(sig in message for sig in PROVIDER_ERROR_SIGNATURES)


def pdf_file_part(data_url: str, filename: str = "edital.pdf") -> dict:
    """Message content part carrying a base64 PDF."""
    return {"type": "file", "file": {"filename": filename, "file_data": data_url}}


class OpenRouterClient:
    """Thin async wrapper over POST /chat/completions."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, title: str = "LicitaRadar"):
        self.settings = get_settings()
        self.base_url = self.settings.openrouter_base_url.rstrip("/")
        self.api_key = self.settings.openrouter_api_key
        self.title = title
        self._http = http_client

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def pdf_plugins(self) -> list[dict]:
        return [{"id": "file-parser", "pdf": {"engine": self.settings.openrouter_pdf_engine}}]

    async def complete(
        self,
        model: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        plugins: Optional[list[dict]] = None,
    ) -> ChatCompletion:
        """
        Run one chat completion.

        Raises ModelProviderError on transport errors, non-2xx responses and
        bodies that are not a chat completion. `provider_failure` is set when
        the error text carries an inference-backend signature.
        """
        if not self.configured:
            raise LLMNotConfigured()

        payload: dict = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if plugins:
            payload["plugins"] = plugins
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.openrouter_referer,
            "X-Title": self.title,
        }
        url = f"{self.base_url}/chat/completions"

        try:
            if self._http is not None:
                response = await self._http.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.settings.llm_timeout_seconds) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.RequestError as e:
            logger.error(f"OpenRouter request failed (model={model}): {e}")
            raise ModelProviderError(f"Erro de rede na API OpenRouter (model={model}): {e}") from e

        if response.status_code >= 400:
            message = f"Erro na API OpenRouter (model={model}): {response.status_code} - {response.text}"
            raise ModelProviderError(
                message,
                provider_failure=is_provider_failure(message),
                status_code=response.status_code,
            )

        try:
            completion = ChatCompletion.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ModelProviderError(
                f"Resposta inesperada da API OpenRouter (model={model}): {response.text[:300]}"
            ) from e

        # OpenRouter reports some upstream failures inside a 200 body
        body = response.json()
        if isinstance(body, dict) and body.get("error") and not completion.choices:
            message = f"Erro na API OpenRouter (model={model}): {body['error']}"
            raise ModelProviderError(message, provider_failure=is_provider_failure(message))

        if not completion.text:
            logger.warning(
                f"OpenRouter returned no usable text (model={model}), raw (trunc): {response.text[:1000]}"
            )
        return completion

    async def complete_with_fallback(
        self,
        model: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        plugins: Optional[list[dict]] = None,
    ) -> tuple[ChatCompletion, str]:
        """
        Run a completion, retrying once on the configured fallback model.

        Only provider/inference-server failures are retried, and only when the
        fallback model differs from the primary. Returns (completion, model used).
        """
        fallback = self.settings.openrouter_fallback_model
        try:
            return await self.complete(model, messages, temperature, max_tokens, plugins), model
        except ModelProviderError as primary_error:
            if not (primary_error.provider_failure and fallback and fallback != model):
                raise
            logger.warning(
                f"Primary model {model} failed, retrying with fallback {fallback}: {primary_error}"
            )
            try:
                completion = await self.complete(fallback, messages, temperature, max_tokens, plugins)
            except ModelProviderError as fallback_error:
                raise ModelProviderError(
                    f"Falha ao chamar modelo primário ({model}) e fallback ({fallback}). "
                    f"Erro primário: {primary_error}. Erro fallback: {fallback_error}",
                    provider_failure=fallback_error.provider_failure,
                ) from fallback_error
            return completion, fallback
