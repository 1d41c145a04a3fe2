"""Locating, checking and downloading the edital PDF of a tender."""
import base64
import logging
import re
from typing import Optional

import httpx

from licitaradar.core.config import get_settings
from licitaradar.core.errors import DocumentNotFound, NotAPdf
from licitaradar.models.schemas import PncpFile, Tender

logger = logging.getLogger(__name__)

FALLBACK_FILE_INDEXES = range(1, 6)

_EDITAL = re.compile(r"edital", re.IGNORECASE)
_TERMO_REFERENCIA = re.compile(r"termo|refer[êe]ncia", re.IGNORECASE)


def _looks_like_pdf_url(url: Optional[str]) -> bool:
    lowered = (url or "").lower()
    return lowered.endswith(".pdf") or ".pdf?" in lowered


def _pick_by_priority(docs: list[PncpFile]) -> Optional[PncpFile]:
    if not docs:
        return None
    for pattern in (_EDITAL, _TERMO_REFERENCIA):
        for doc in docs:
            if pattern.search(doc.tipo_documento_nome or ""):
                return doc
    return docs[0]


def choose_document(docs: list[PncpFile]) -> Optional[PncpFile]:
    """
    Pick the stored document most likely to be the edital.

    PDF-looking URLs are tried first, then any document with a URL. Within
    each set: type name matching "edital", then "termo"/"referência", then
    the first one.
    """
    chosen = _pick_by_priority([d for d in docs if _looks_like_pdf_url(d.url_pncp)])
    if chosen is None:
        chosen = _pick_by_priority([d for d in docs if d.url_pncp])
    return chosen


class DocumentFetcher:
    """HTTP side of edital handling: PNCP file probing, PDF checks and download."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self._http = http_client

    async def _request(self, method: str, url: str) -> httpx.Response:
        if self._http is not None:
            return await self._http.request(method, url, follow_redirects=True)
        async with httpx.AsyncClient(
            timeout=self.settings.pncp_timeout_seconds, follow_redirects=True
        ) as client:
            return await client.request(method, url)

    async def find_pncp_file_url(self, tender: Tender) -> Optional[str]:
        """Probe /arquivos/1..5 of the purchase on PNCP and return the first URL answering 2xx."""
        if not (tender.orgao_cnpj and tender.ano_compra and tender.numero_compra):
            return None
        base = (
            f"{self.settings.pncp_api_url}/orgaos/{tender.orgao_cnpj}"
            f"/compras/{tender.ano_compra}/{tender.numero_compra}/arquivos"
        )
        for index in FALLBACK_FILE_INDEXES:
            url = f"{base}/{index}"
            try:
                response = await self._request("GET", url)
            except httpx.RequestError as e:
                logger.error(f"Erro ao testar URL de arquivo PNCP {url}: {e}")
                continue
            if response.is_success:
                return url
        return None

    async def locate(
        self,
        tender: Tender,
        stored_docs: list[PncpFile],
        upload_url: Optional[str] = None,
    ) -> str:
        """
        Resolve the edital URL: explicit upload > stored documents > PNCP probe.

        Raises DocumentNotFound when none of them yields a URL.
        """
        if upload_url:
            return upload_url

        if stored_docs:
            chosen = choose_document(stored_docs)
            if chosen is None or not chosen.url_pncp:
                sample = [
                    {"tipo_documento_nome": d.tipo_documento_nome, "url_pncp": d.url_pncp}
                    for d in stored_docs[:5]
                ]
                raise DocumentNotFound(
                    f"Nenhum PDF de edital encontrado para esta licitação. "
                    f"Documentos recebidos: {len(stored_docs)}. Amostra: {sample}"
                )
            return chosen.url_pncp

        fallback_url = await self.find_pncp_file_url(tender)
        if not fallback_url:
            raise DocumentNotFound(
                "Nenhum PDF de edital encontrado para esta licitação (sem documentos no banco "
                "e nenhuma URL válida encontrada no PNCP)."
            )
        return fallback_url

    async def assert_pdf(self, url: str) -> None:
        """
        Raise NotAPdf unless the resource looks like a PDF.

        HEAD first; servers that reject HEAD (405/501 or any non-2xx) are
        retried with GET before the headers are inspected.
        """
        try:
            response = await self._request("HEAD", url)
            if not response.is_success or response.status_code in (405, 501):
                response = await self._request("GET", url)
        except httpx.RequestError as e:
            raise DocumentNotFound(
                f"Não foi possível verificar o tipo de arquivo do edital para análise: {e}"
            ) from e

        content_type = response.headers.get("content-type", "").lower()
        content_disp = response.headers.get("content-disposition", "").lower()
        looks_pdf = "pdf" in content_type or ".pdf" in content_disp or ".pdf" in url.lower()
        if not looks_pdf:
            raise NotAPdf(
                f'O arquivo selecionado para o edital não parece ser um PDF '
                f'(content-type="{content_type or "desconhecido"}", '
                f'content-disposition="{content_disp or "desconhecido"}"). '
                f"A análise automática não foi executada."
            )

    async def fetch_pdf_data_url(self, url: str) -> str:
        """Download the PDF and return it as a data:application/pdf;base64 URL."""
        try:
            response = await self._request("GET", url)
        except httpx.RequestError as e:
            raise DocumentNotFound(f"Falha ao baixar o PDF do edital para análise: {e}") from e
        if not response.is_success:
            raise DocumentNotFound(
                f"Falha ao baixar o PDF do edital para análise (status {response.status_code})."
            )
        encoded = base64.b64encode(response.content).decode("ascii")
        logger.debug(f"Downloaded edital PDF {url} ({len(response.content)} bytes)")
        return f"data:application/pdf;base64,{encoded}"
