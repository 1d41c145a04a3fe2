"""
Edital (tender notice) deep analysis and chat over the edital PDF.

The analysis result is persisted per tender in licitacao_edital_ia; the
status moves processing → done | error and every attempt overwrites the
previous one.
"""
import json
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from licitaradar.core.config import get_settings
from licitaradar.core.database import get_session_factory
from licitaradar.core.errors import (
    InvalidModelOutput, LicitaRadarError, LLMNotConfigured, TenderNotFound,
)
from licitaradar.models.schemas import (
    AnalysisStatus, ChatMessage, EditalAnalysis, SearchProfile, Tender,
)
from licitaradar.services import db_ops
from licitaradar.services.documents import DocumentFetcher
from licitaradar.services.model_output import parse_edital_analysis, preview
from licitaradar.services.openrouter_client import OpenRouterClient, pdf_file_part

logger = logging.getLogger(__name__)

DEFAULT_CHAT_PROMPT = "Analise o edital em PDF anexado."

ANALYSIS_FORMAT = """{
      "resumo_geral": string,
      "requisitos_obrigatorios": string[],
      "documentos_exigidos": string[],
      "riscos": string[],
      "recomendacao_participar": boolean,
      "justificativa_recomendacao": string,
      "score_adequacao": number (0 a 100),
      "perguntas_para_cliente": string[] opcional
    }"""

ANALYSIS_INSTRUCTIONS = [
    'Considere que o cliente atua no segmento descrito em "Configuração ativa" (palavras-chave e estados foco). '
    "A recomendação deve refletir a aderência a esse perfil, mas SEM inventar requisitos ou documentos que não "
    "estejam no edital.",
    'Preencha SEMPRE os campos "requisitos_obrigatorios", "documentos_exigidos" e "riscos" como listas de itens '
    "curtos e objetivos (sem parágrafos longos).",
    'Em "requisitos_obrigatorios", vá primeiro às seções típicas de habilitação (por exemplo, "Da Habilitação", '
    '"Documentos de Habilitação", "Da Participação", "Condições para Participação") e liste APENAS requisitos que '
    "apareçam de forma clara ali: exigência de experiência prévia, atestados específicos, capital social mínimo, "
    "índices econômico-financeiros, certificações, credenciamentos, condições de habilitação restritivas, "
    "impedimentos, etc. NÃO presuma requisitos com base em práticas típicas; se não encontrar nada, deixe a lista "
    "vazia e explique isso na justificativa.",
    'Em "documentos_exigidos", destaque principalmente os documentos de habilitação jurídica, fiscal, trabalhista, '
    "qualificação técnica e econômico-financeira (ex.: contrato social, CNPJ, certidões fiscais, CNDT, CND/INSS, "
    "FGTS, balanço patrimonial, atestados de capacidade técnica, declarações, procurações). Liste APENAS "
    "documentos explicitamente mencionados no edital, mencionando cláusulas ou anexos quando possível. NÃO inclua "
    "CNDT, INSS, FGTS, INMETRO, ISO ou documentos semelhantes se o edital não falar disso de forma clara.",
    'Em "riscos", liste de 3 a 10 riscos ou pontos de atenção práticos (prazos curtos, escopo muito amplo, '
    "exigências incomuns, risco de disputa de preço, riscos contratuais, etc.), podendo incluir inferências, mas "
    "deixando claro quando algo não está explicitamente escrito.",
    'Se possível, preencha "perguntas_para_cliente" com 3 a 10 dúvidas que a equipe deve tirar internamente, '
    "principalmente sobre pontos não detalhados no edital.",
    "A recomendação de participação e o score de adequação devem considerar principalmente: alinhamento de "
    "escopo, localização (UF/município) e palavras-chave da configuração ativa.",
    "Se o PDF ou o aviso não trouxer uma informação, deixe o campo como lista vazia ou explique isso na "
    "justificativa (não invente dados).",
    "Seja específico nos requisitos/documentos (cite itens, anexos, prazos, valores quando estiverem disponíveis).",
    'O campo "resumo_geral" deve ter no máximo 900 caracteres (cerca de 10 a 12 linhas).',
    "Cada item das listas (requisitos, documentos, riscos, perguntas) deve ter no máximo 250 caracteres.",
    "Se o edital parecer inadequado, justifique claramente na recomendação.",
    "Score 0 = totalmente inadequado; 100 = altamente alinhado.",
    "NÃO envolva conteúdo fora do PDF/aviso + dados fornecidos.",
]


def build_analysis_prompt(tender: Tender, profile: Optional[SearchProfile]) -> str:
    if tender.municipio_nome and tender.uf_sigla:
        local = f"{tender.municipio_nome}/{tender.uf_sigla}"
    else:
        local = tender.uf_sigla
    details = {
        "numero_compra": tender.numero_compra,
        "ano_compra": tender.ano_compra,
        "modalidade": tender.modalidade_nome,
        "objeto": tender.objeto_compra,
        "orgao": tender.orgao_razao_social,
        "local": local,
        "valor_total_estimado": tender.valor_total_estimado,
        "data_publicacao": tender.data_publicacao_pncp,
        "data_encerramento": tender.data_encerramento_proposta,
    }

    if profile:
        config_summary = (
            f"\nConfiguração ativa: {profile.name or 'Sem nome'}\n"
            f"Palavras-chave: {', '.join(profile.keywords) or 'Não informadas'}\n"
            f"Estados foco: {', '.join(profile.states) or 'Não definidos'}"
        )
    else:
        config_summary = "Sem configuração associada."

    instructions = "\n".join(f"- {line}" for line in ANALYSIS_INSTRUCTIONS)
    return (
        "Você é um consultor jurídico especializado em licitações brasileiras.\n"
        "Analise o edital em PDF anexado e produza um diagnóstico completo da oportunidade, sempre respondendo "
        "APENAS em JSON válido, sem comentários (não use // nem /* */) e sem nenhum texto antes ou depois do JSON.\n\n"
        f"Dados da licitação (oferecidos fora do PDF):\n{json.dumps(details, ensure_ascii=False, indent=2)}\n\n"
        f"{config_summary}\n\n"
        f"Sua resposta DEVE ser exclusivamente um JSON com o seguinte formato:\n{ANALYSIS_FORMAT}\n\n"
        f"Instruções importantes:\n{instructions}"
    )


def build_chat_messages(messages: list[ChatMessage], pdf_data_url: Optional[str]) -> list[dict]:
    """Map plain chat messages to content-part messages, attaching the PDF to the last user turn."""
    mapped = [
        {"role": m.role, "content": [{"type": "text", "text": m.content}]}
        for m in messages
    ]
    if pdf_data_url:
        user_turns = [i for i, m in enumerate(mapped) if m["role"] == "user"]
        if user_turns:
            target = user_turns[-1]
        else:
            mapped.append({"role": "user", "content": [{"type": "text", "text": DEFAULT_CHAT_PROMPT}]})
            target = len(mapped) - 1
        mapped[target]["content"].append(pdf_file_part(pdf_data_url))
    return mapped


class EditalAnalyzer:
    """Runs the structured edital diagnosis and the edital chat."""

    def __init__(
        self,
        llm: Optional[OpenRouterClient] = None,
        fetcher: Optional[DocumentFetcher] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.settings = get_settings()
        self.llm = llm or OpenRouterClient(title="LicitaRadar IA Edital")
        self.fetcher = fetcher or DocumentFetcher()
        self._session_factory = session_factory

    def _sessions(self) -> async_sessionmaker:
        return self._session_factory or get_session_factory()

    async def analyze(self, tender_id: str, upload_url: Optional[str] = None) -> EditalAnalysis:
        """
        Analyze the edital of one tender and persist the outcome.

        Raises TenderNotFound (nothing is written) and LLMNotConfigured.
        Every other failure is stored as ia_status=error and the stored row
        is returned.
        """
        if not self.llm.configured:
            raise LLMNotConfigured()

        async with self._sessions()() as session:
            tender = await db_ops.get_tender(session, tender_id)
            if tender is None:
                raise TenderNotFound(f"Licitação {tender_id} não encontrada")
            profile = None
            if tender.search_config_id:
                profile = await db_ops.get_profile(session, tender.search_config_id)

            edital_url: Optional[str] = upload_url
            try:
                stored_docs = [] if upload_url else await db_ops.list_tender_documents(session, tender_id)
                edital_url = await self.fetcher.locate(tender, stored_docs, upload_url)
                await self.fetcher.assert_pdf(edital_url)
                pdf_data_url = await self.fetcher.fetch_pdf_data_url(edital_url)

                await db_ops.upsert_edital_analysis(session, EditalAnalysis(
                    licitacao_encontrada_id=tender_id,
                    edital_url=edital_url,
                    ia_status=AnalysisStatus.PROCESSING,
                ))

                result, raw, model = await self._run_analysis(tender, profile, pdf_data_url)
            except LicitaRadarError as e:
                logger.error(f"Edital analysis failed for {tender_id}: {e}")
                return await db_ops.upsert_edital_analysis(session, EditalAnalysis(
                    licitacao_encontrada_id=tender_id,
                    edital_url=edital_url,
                    ia_status=AnalysisStatus.ERROR,
                    ia_processing_error=str(e),
                ))

            logger.info(
                f"Edital analysis done for {tender_id} (model={model}, "
                f"score={result.score_adequacao:.0f}, participar={result.recomendacao_participar})"
            )
            return await db_ops.upsert_edital_analysis(session, EditalAnalysis(
                licitacao_encontrada_id=tender_id,
                edital_url=edital_url,
                ia_status=AnalysisStatus.DONE,
                ia_resumo=result.resumo_geral,
                ia_requisitos_obrigatorios=result.requisitos_obrigatorios,
                ia_documentos_exigidos=result.documentos_exigidos,
                ia_riscos=result.riscos,
                ia_perguntas_para_cliente=result.perguntas_para_cliente,
                ia_recomendacao_participar=result.recomendacao_participar,
                ia_justificativa=result.justificativa_recomendacao,
                ia_score_adequacao=result.score_adequacao,
                ia_raw_json=raw,
                ia_model=model,
            ))

    async def _run_analysis(self, tender: Tender, profile: Optional[SearchProfile], pdf_data_url: str):
        messages = [{
            "role": "user",
            "content": [
                {"type": "text", "text": build_analysis_prompt(tender, profile)},
                pdf_file_part(pdf_data_url),
            ],
        }]
        completion, model = await self.llm.complete_with_fallback(
            self.settings.openrouter_analysis_model,
            messages,
            temperature=self.settings.analysis_temperature,
            max_tokens=self.settings.analysis_max_tokens,
            plugins=self.llm.pdf_plugins(),
        )
        text = completion.text
        if not text:
            raise InvalidModelOutput("Resposta vazia ou inválida da IA de análise do edital.")
        result, raw = parse_edital_analysis(text)
        return result, raw, model

    async def get_analysis(self, tender_id: str) -> Optional[EditalAnalysis]:
        async with self._sessions()() as session:
            return await db_ops.get_edital_analysis(session, tender_id)

    async def chat(self, messages: list[ChatMessage], pdf_url: Optional[str] = None) -> dict:
        """
        Free-form chat about an edital. Nothing is persisted.

        Returns {"status": "ok", "model": ..., "reply": ...}.
        """
        if not messages:
            raise ValueError("Informe um array messages com pelo menos uma mensagem de usuário.")
        if not self.llm.configured:
            raise LLMNotConfigured()

        pdf_data_url = None
        if pdf_url:
            await self.fetcher.assert_pdf(pdf_url)
            pdf_data_url = await self.fetcher.fetch_pdf_data_url(pdf_url)

        completion, model = await self.llm.complete_with_fallback(
            self.settings.chat_model,
            build_chat_messages(messages, pdf_data_url),
            temperature=self.settings.chat_temperature,
            max_tokens=self.settings.chat_max_tokens,
            plugins=self.llm.pdf_plugins() if pdf_data_url else None,
        )
        reply = completion.text
        if not reply:
            raise InvalidModelOutput("Resposta vazia ou inválida da IA no chat do edital.")
        logger.info(f"Edital chat answered by {model} ({len(reply)} chars: {preview(reply, 80)!r})")
        return {"status": "ok", "model": model, "reply": reply}
