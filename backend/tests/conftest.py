"""
Shared fixtures: a throwaway SQLite database per test and httpx mock clients
standing in for PNCP, OpenRouter and the PDF hosts.
"""
import os

# Settings are read from the environment, so set them before any import
os.environ["OPENROUTER_API_KEY"] = "test-key"
os.environ["OPENROUTER_FALLBACK_MODEL"] = ""
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SUPABASE_URL"] = "https://storage.test"
os.environ["SUPABASE_SERVICE_KEY"] = "service-key"
os.environ["PNCP_PAGE_SIZE"] = "50"

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from licitaradar.core.config import get_settings
from licitaradar.core.database import create_tables, make_engine
from licitaradar.models.schemas import PncpCandidate, SearchProfile
from licitaradar.services import db_ops


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def set_env(monkeypatch):
    """Override settings for one test. The cached Settings object is rebuilt."""
    def _set(**values):
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()
    return _set


@pytest.fixture
async def session_factory(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'licitaradar-test.db'}")
    await create_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def mock_http():
    """Build an AsyncClient whose requests are answered by `handler(request)`."""
    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _make


def _search_item(n: int, **overrides) -> dict:
    item = {
        "numero_controle_pncp": f"00394460000141-1-{n:06d}/2025",
        "numero_sequencial": n,
        "ano": "2025",
        "description": f"Aquisição de notebooks e computadores lote {n}",
        "title": f"Pregão {n}/2025",
        "modalidade_licitacao_nome": "Pregão - Eletrônico",
        "situacao_nome": "Divulgada no PNCP",
        "valor_global": 1000.0 + n,
        "data_publicacao_pncp": "2025-03-01T10:00:00",
        "orgao_cnpj": "00394460000141",
        "orgao_nome": "Ministério da Fazenda",
        "unidade_nome": "Coordenação de Compras",
        "municipio_nome": "Brasília",
        "uf": "DF",
        "item_url": f"/compras/00394460000141/2025/{n}",
    }
    item.update(overrides)
    return item


@pytest.fixture
def search_item():
    """Raw PNCP search API item factory."""
    return _search_item


@pytest.fixture
def search_api():
    """
    Handler factory for the PNCP search API serving `total` items in pages.

    The returned handler records every request in `handler.requests`.
    """
    def _make(total: int, status_code: int = 200, prefix: int = 0):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if status_code != 200:
                return httpx.Response(status_code, text="indisponível")
            page = int(request.url.params["pagina"])
            size = int(request.url.params["tam_pagina"])
            start = (page - 1) * size
            items = [_search_item(prefix + n) for n in range(start, min(start + size, total))]
            return httpx.Response(200, json={"items": items, "total": total})

        handler.requests = requests
        return handler
    return _make


def completion_body(content, model: str = "test/model") -> dict:
    return {
        "id": "gen-1",
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }


@pytest.fixture
def llm_reply():
    """Build an OpenRouter chat-completions response body."""
    return completion_body


@pytest.fixture
def make_profile(session):
    async def _make(**fields) -> SearchProfile:
        data = {"id": "perfil-ti", "name": "Informática", "keywords": ["notebook"], "states": ["DF"]}
        data.update(fields)
        return await db_ops.upsert_profile(session, SearchProfile(**data))
    return _make


@pytest.fixture
def make_tender(session):
    async def _make(n: int = 1, profile_id=None, **fields):
        candidate = PncpCandidate(
            numero_controle_pncp=f"00394460000141-1-{n:06d}/2025",
            numero_compra=str(n),
            ano_compra=2025,
            objeto_compra=fields.pop("objeto_compra", "Aquisição de notebooks"),
            orgao_cnpj="00394460000141",
            orgao_razao_social="Ministério da Fazenda",
            municipio_nome="Brasília",
            uf_sigla="DF",
            **fields,
        )
        return await db_ops.insert_tender_if_absent(session, profile_id, candidate)
    return _make
