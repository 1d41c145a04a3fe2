"""Error taxonomy shared by the ingestion, classification and analysis services."""
from typing import Optional


class LicitaRadarError(Exception):
    """Base class for every domain error raised by the core pipeline."""


class SourceUnavailable(LicitaRadarError):
    """PNCP search/detail API returned non-2xx, an unexpected body, or failed in transport."""


class StorageError(LicitaRadarError):
    """A database lookup, insert or update failed."""


class InvalidModelOutput(LicitaRadarError):
    """The LLM reply could not be parsed into the required JSON contract."""

    def __init__(self, message: str, preview: Optional[str] = None):
        if preview is not None:
            message = f'{message}. Trecho: "{preview}"'
        super().__init__(message)
        self.preview = preview


class DocumentNotFound(LicitaRadarError):
    """No eligible edital PDF could be located or downloaded."""


class NotAPdf(LicitaRadarError):
    """Content-type / disposition / URL checks say the resource is not a PDF."""


class ModelProviderError(LicitaRadarError):
    """The LLM endpoint failed. `provider_failure` marks inference-backend errors eligible for fallback."""

    def __init__(self, message: str, provider_failure: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider_failure = provider_failure
        self.status_code = status_code


class LLMNotConfigured(ModelProviderError):
    """OPENROUTER_API_KEY is not set."""

    def __init__(self, message: str = "OPENROUTER_API_KEY não configurada"):
        super().__init__(message)


class TenderNotFound(LicitaRadarError):
    pass


class ProfileNotFound(LicitaRadarError):
    pass


class InvalidStatusTransition(LicitaRadarError):
    pass
