"""PNCP API integration for fetching public procurement opportunities."""
import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx
from pydantic import ValidationError

from licitaradar.core.config import get_settings
from licitaradar.core.errors import SourceUnavailable
from licitaradar.models.schemas import PncpCandidate, PncpFile, SearchPage

logger = logging.getLogger(__name__)

# Fixed search params, the same query the PNCP portal issues for open editais
_SEARCH_DEFAULTS = {
    "tipos_documento": "edital",
    "ordenacao": "-data",
    "status": "recebendo_proposta",
}


class PNCPClient:
    """Client for the PNCP search, consulta and purchase-file APIs."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = get_settings()
        self.search_url = self.settings.pncp_search_url
        self.page_size = self.settings.pncp_page_size
        self.max_pages = self.settings.pncp_max_pages
        self._http = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http is not None:
            return self._http
        return httpx.AsyncClient(timeout=self.settings.pncp_timeout_seconds)

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(url, params=params, headers={"Accept": "application/json"})
        async with self._client() as client:
            return await client.get(url, params=params, headers={"Accept": "application/json"})

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def build_search_params(
        self,
        keyword: str,
        states: list[str],
        modalidades: list[int],
        page: int,
        page_size: int,
    ) -> dict:
        params = {
            "q": (keyword or "").strip(),
            "tipos_documento": _SEARCH_DEFAULTS["tipos_documento"],
            "ordenacao": _SEARCH_DEFAULTS["ordenacao"],
            "pagina": str(page),
            "tam_pagina": str(page_size),
            "status": _SEARCH_DEFAULTS["status"],
        }
        if states:
            params["ufs"] = ",".join(states)
        if modalidades:
            params["modalidades"] = ",".join(str(m) for m in modalidades)
        return params

    async def search_page(
        self,
        keyword: str = "",
        states: Optional[list[str]] = None,
        modalidades: Optional[list[int]] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> SearchPage:
        """
        Fetch one page of the PNCP search API.

        Raises SourceUnavailable on transport errors, non-2xx responses or a
        body that is not `{items: [...], total: n}`.
        """
        page_size = page_size or self.page_size
        params = self.build_search_params(keyword, states or [], modalidades or [], page, page_size)

        try:
            response = await self._get(self.search_url, params=params)
        except httpx.RequestError as e:
            logger.error(f"PNCP search request failed (page {page}): {e}")
            raise SourceUnavailable(f"PNCP search API request failed (page {page}): {e}") from e

        if response.status_code >= 400:
            message = f"PNCP search API error (page {page}): {response.status_code}"
            if response.text:
                message += f" - {response.text[:500]}"
            logger.error(message)
            raise SourceUnavailable(message)

        try:
            data = response.json()
        except ValueError as e:
            raise SourceUnavailable(f"PNCP search API returned invalid JSON (page {page})") from e

        if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
            raise SourceUnavailable(f"PNCP search API returned an unexpected body (page {page})")

        raw_items = data.get("items") or []
        total = data.get("total") or 0
        if not isinstance(total, int):
            try:
                total = int(total)
            except (TypeError, ValueError):
                total = 0

        candidates: list[PncpCandidate] = []
        for item in raw_items:
            candidate = self._parse_candidate(item)
            if candidate:
                candidates.append(candidate)

        logger.info(
            f"PNCP search q={params['q'] or '(vazio)'!r} page={page}: "
            f"{len(raw_items)} items (total={total})"
        )
        return SearchPage(page=page, items=candidates, total=total, raw_count=len(raw_items))

    async def iter_search(
        self,
        keyword: str = "",
        states: Optional[list[str]] = None,
        modalidades: Optional[list[int]] = None,
    ) -> AsyncIterator[SearchPage]:
        """
        Yield every page for one keyword until the result set is exhausted.

        Stops after an empty page, a short page, or once the running item
        count reaches the API-reported total. Exceeding `pncp_max_pages`
        raises SourceUnavailable rather than looping forever.
        """
        page = 1
        fetched = 0
        while True:
            if page > self.max_pages:
                raise SourceUnavailable(
                    f"PNCP pagination exceeded {self.max_pages} pages for keyword {keyword!r}"
                )
            result = await self.search_page(keyword, states, modalidades, page, self.page_size)
            if result.raw_count == 0:
                return
            fetched += result.raw_count
            yield result

            if result.raw_count < self.page_size:
                return
            if result.total and fetched >= result.total:
                return
            page += 1

    def _parse_candidate(self, raw: dict) -> Optional[PncpCandidate]:
        """Normalize a raw search item into a PncpCandidate."""
        if not isinstance(raw, dict):
            return None
        numero_controle = raw.get("numero_controle_pncp")
        if not numero_controle:
            logger.debug("Skipping PNCP item without numero_controle_pncp")
            return None

        try:
            ano = raw.get("ano")
            return PncpCandidate(
                numero_controle_pncp=str(numero_controle),
                numero_compra=str(raw["numero_sequencial"]) if raw.get("numero_sequencial") is not None else None,
                ano_compra=int(ano) if ano else None,
                objeto_compra=raw.get("description") or raw.get("title") or "",
                modalidade_nome=raw.get("modalidade_licitacao_nome"),
                situacao=raw.get("situacao_nome"),
                valor_total_estimado=raw.get("valor_global"),
                data_publicacao_pncp=raw.get("data_publicacao_pncp"),
                orgao_cnpj=raw.get("orgao_cnpj"),
                orgao_razao_social=raw.get("orgao_nome"),
                unidade_nome=raw.get("unidade_nome"),
                municipio_nome=raw.get("municipio_nome"),
                uf_sigla=raw.get("uf"),
                link_pncp=self.build_portal_link(raw.get("item_url") or ""),
                raw_data=raw,
            )
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse PNCP item {numero_controle}: {e}")
            return None

    def build_portal_link(self, item_url: str) -> str:
        """Search returns '/compras/...'; the portal shows the same purchase under '/editais/...'."""
        path = item_url
        if path.startswith("/compras/"):
            path = "/editais/" + path[len("/compras/"):]
        return f"{self.settings.pncp_portal_url}{path}"

    # ------------------------------------------------------------------
    # Purchase details
    # ------------------------------------------------------------------

    def purchase_base_url(self, orgao_cnpj: str, ano_compra: int, numero_compra: str) -> str:
        return f"{self.settings.pncp_api_url}/orgaos/{orgao_cnpj}/compras/{ano_compra}/{numero_compra}"

    async def get_purchase_details(
        self,
        orgao_cnpj: str,
        ano_compra: int,
        numero_compra: str,
    ) -> dict:
        """
        Fetch the portal record plus items, files and history of one purchase.

        Each part is None when PNCP does not answer for it; only missing
        identifiers are an error.
        """
        portal = await self._get_portal_record(orgao_cnpj, ano_compra, numero_compra)

        base = self.purchase_base_url(orgao_cnpj, ano_compra, numero_compra)
        list_params = {"pagina": 1, "tamanhoPagina": 100}
        itens, arquivos, historico = await asyncio.gather(
            self._get_json_or_none(f"{base}/itens", list_params),
            self._get_json_or_none(f"{base}/arquivos", list_params),
            self._get_json_or_none(f"{base}/historico", list_params),
        )
        return {"portal": portal, "itens": itens, "arquivos": arquivos, "historico": historico}

    async def _get_portal_record(self, orgao_cnpj: str, ano_compra: int, numero_compra: str):
        digits = "".join(ch for ch in str(numero_compra) if ch.isdigit())
        if not digits:
            return None
        sequencial = int(digits)
        # consulta API is picky about padding: 70 → 000070, then 70
        for seq in (str(sequencial).zfill(6), str(sequencial)):
            url = f"{self.settings.pncp_consulta_url}/orgaos/{orgao_cnpj}/compras/{ano_compra}/{seq}"
            portal = await self._get_json_or_none(url)
            if portal is not None:
                return portal
        return None

    async def _get_json_or_none(self, url: str, params: Optional[dict] = None):
        try:
            response = await self._get(url, params=params)
        except httpx.RequestError as e:
            logger.warning(f"PNCP request failed for {url}: {e}")
            return None
        if response.status_code >= 400:
            logger.warning(f"PNCP returned {response.status_code} for {url}")
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning(f"PNCP returned non-JSON body for {url}")
            return None

    async def list_purchase_files(
        self,
        orgao_cnpj: str,
        ano_compra: int,
        numero_compra: str,
    ) -> list[PncpFile]:
        """List the documents attached to a purchase. Raises SourceUnavailable on failure."""
        url = f"{self.purchase_base_url(orgao_cnpj, ano_compra, numero_compra)}/arquivos"
        try:
            response = await self._get(url, params={"pagina": 1, "tamanhoPagina": 100})
        except httpx.RequestError as e:
            raise SourceUnavailable(f"PNCP files request failed: {e}") from e
        if response.status_code >= 400:
            raise SourceUnavailable(f"PNCP files API error: {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise SourceUnavailable("PNCP files API returned invalid JSON") from e
        if isinstance(data, dict):
            data = data.get("items") or data.get("data") or []
        if not isinstance(data, list):
            raise SourceUnavailable("PNCP files API returned an unexpected body")
        return [self._parse_file(f) for f in data if isinstance(f, dict)]

    def _parse_file(self, raw: dict) -> PncpFile:
        tipo = raw.get("tipoDocumentoId", raw.get("tipo"))
        return PncpFile(
            tipo_documento=int(tipo) if isinstance(tipo, (int, str)) and str(tipo).isdigit() else None,
            tipo_documento_nome=raw.get("tipoDocumentoNome") or raw.get("tipoDocumentoDescricao"),
            nome_arquivo_pncp=raw.get("titulo") or raw.get("nomeArquivo"),
            url_pncp=raw.get("url") or raw.get("uri") or raw.get("urlArquivo"),
            data_inclusao_pncp=raw.get("dataPublicacaoPncp") or raw.get("dataInclusao"),
        )
