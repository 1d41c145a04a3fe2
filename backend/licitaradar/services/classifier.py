"""
Relevance classifier for newly found licitações.

Asks the configured OpenRouter model whether a tender's object matches the
profile keywords and stores the verdict (score, justificativa, relevante,
tags) on the tender row.

Integration:
    classifier = RelevanceClassifier()
    await classifier.classify_and_store(session, tender, profile.keywords, profile.states)
"""
import json
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from licitaradar.core.config import get_settings
from licitaradar.core.database import get_session_factory
from licitaradar.core.errors import LicitaRadarError, LLMNotConfigured, StorageError
from licitaradar.models.schemas import (
    ClassificationOutcome, ClassificationResult, ClassifyPendingResult, Tender,
)
from licitaradar.services import db_ops
from licitaradar.services.model_output import parse_classification
from licitaradar.services.openrouter_client import OpenRouterClient

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Você é um analista especialista em licitações brasileiras. Sempre responda APENAS em JSON "
    "válido, sem texto extra. Nunca invente informações: não diga que uma palavra-chave está "
    "presente se ela não aparece claramente no texto fornecido. Baseie-se apenas nas informações "
    "da licitação e nas regras descritas pelo usuário."
)

PROMPT_TEMPLATE = """Você é um analista especialista em licitações e deve indicar se a oportunidade a seguir é relevante
para o usuário com base nas palavras-chave e estados configurados.

REGRAS GERAIS (SCORE):
- Atribua um score de 0 a 100 (quanto mais alto, mais relevante).
- Considere principalmente a aderência do OBJETO às palavras-chave da busca.
- Use a seguinte régua:
  - 90 a 100: objeto claramente alinhado com várias palavras-chave principais da busca.
  - 75 a 89: objeto bem alinhado, mas não perfeito (ou parcialmente relacionado a algumas keywords).
  - 50 a 74: relação moderada / indireta com as keywords.
  - 31 a 49: relação fraca.
  - 0 a 30: não aderente às keywords.
- Responda APENAS com JSON válido (sem texto extra).
- Campos obrigatórios do JSON de resposta: {{
    "score": number,
    "justificativa": string,
    "relevante": boolean,
    "tags": string[] opcional
  }}

REGRAS SOBRE PALAVRAS-CHAVE:
- Leia com atenção o campo de objeto/descrição da licitação.
- NUNCA afirme que uma palavra-chave está presente se ela NÃO aparecer claramente no texto da licitação
  (objeto ou descrição dos itens) ou em um sinônimo MUITO óbvio.
- Se nenhuma palavra-chave (nem sinônimos óbvios) for encontrada no texto, defina obrigatoriamente:
    "relevante": false
    "score": no máximo 30
- Quando o objeto menciona de forma clara termos diretamente relacionados às keywords (por exemplo,
  para buscas de informática/TI: "computadores", "notebooks", "desktops", "laptops", "equipamentos de TI",
  "material de informática", "hardware", etc.), e isso estiver alinhado com as palavras-chave da busca,
  dê preferência a scores na faixa de 85 a 100.
- Na justificativa, explique sempre quais palavras-chave encontrou, em qual parte do texto e por que isso
  levou ao score atribuído; se não encontrou nenhuma, diga explicitamente que nenhuma palavra-chave foi encontrada.

REGRAS SOBRE ESTADO/REGIÃO:
- Estados prioritários aumentam o score apenas se o conteúdo também for aderente às palavras-chave.
- Nunca classifique como relevante apenas porque o estado é prioritário.

- "relevante" deve ser true somente quando a licitação aparentar encaixar bem no contexto do usuário.

Contexto do usuário:
- Palavras-chave: {keywords}
- Estados prioritários: {states}

Licitação:
{tender_json}
"""

EMPTY_REPLY_JUSTIFICATIVA = (
    "Resposta vazia ou inválida da IA; classificado automaticamente como não relevante."
)


def _tender_summary(tender: Tender) -> dict:
    if tender.municipio_nome and tender.uf_sigla:
        local = f"{tender.municipio_nome}/{tender.uf_sigla}"
    else:
        local = tender.uf_sigla
    return {
        "numero_controle_pncp": tender.numero_controle_pncp,
        "numero_compra": tender.numero_compra,
        "ano_compra": tender.ano_compra,
        "modalidade": tender.modalidade_nome,
        "objeto": tender.objeto_compra,
        "valor_total_estimado": tender.valor_total_estimado,
        "data_publicacao": tender.data_publicacao_pncp,
        "data_encerramento": tender.data_encerramento_proposta,
        "local": local,
        "orgao": tender.orgao_razao_social,
    }


def build_classification_prompt(
    tender: Tender,
    keywords: Optional[list[str]],
    states: Optional[list[str]],
) -> str:
    """Render the user prompt. Deterministic for a given tender and context."""
    return PROMPT_TEMPLATE.format(
        keywords=", ".join(keywords) if keywords is not None else "não informadas",
        states=", ".join(states) if states is not None else "não definidos",
        tender_json=json.dumps(_tender_summary(tender), ensure_ascii=False, indent=2),
    )


def fallback_result() -> ClassificationResult:
    return ClassificationResult(
        score=0,
        justificativa=EMPTY_REPLY_JUSTIFICATIVA,
        relevante=False,
        tags=["fallback", "invalid_response"],
    )


class RelevanceClassifier:
    """
    Scores tenders against a profile's keywords and states with an LLM.

    The model is instructed to cap the score at 30 when no keyword appears;
    that rule lives in the prompt, the parsed score is only clamped to 0..100.
    """

    def __init__(self, llm: Optional[OpenRouterClient] = None):
        self.settings = get_settings()
        self.llm = llm or OpenRouterClient(title="LicitaRadar IA Filter")

    @property
    def configured(self) -> bool:
        return self.llm.configured

    async def classify(
        self,
        tender: Tender,
        keywords: Optional[list[str]],
        states: Optional[list[str]],
    ) -> ClassificationResult:
        """Classify one tender. Raises ModelProviderError / InvalidModelOutput."""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_classification_prompt(tender, keywords, states)},
        ]
        completion, model = await self.llm.complete_with_fallback(
            self.settings.openrouter_model,
            messages,
            temperature=self.settings.ia_temperature,
            max_tokens=self.settings.ia_max_tokens,
        )
        text = completion.text
        if not text:
            logger.warning(f"Empty classifier reply for {tender.numero_controle_pncp} (model={model})")
            return fallback_result()
        return parse_classification(text)

    async def classify_and_store(
        self,
        session,
        tender: Tender,
        keywords: Optional[list[str]],
        states: Optional[list[str]],
    ) -> ClassificationOutcome:
        """
        Classify and persist the verdict or the failure on the tender row.

        Classification failures are recorded (ia_needs_review=True) and
        reported in the outcome; only storage failures propagate.
        """
        try:
            result = await self.classify(tender, keywords, states)
        except LicitaRadarError as e:
            logger.error(f"Erro ao classificar licitação {tender.id}: {e}")
            await db_ops.save_classification_error(session, tender.id, str(e) or "Erro desconhecido")
            return ClassificationOutcome(id=tender.id, status="error", error=str(e))

        await db_ops.save_classification(session, tender.id, result)
        logger.info(
            f"Classified {tender.numero_controle_pncp}: score={result.score} relevante={result.relevante}"
        )
        return ClassificationOutcome(id=tender.id, status="ok")

    async def classify_pending(
        self,
        profile_id: Optional[str] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ) -> ClassifyPendingResult:
        """
        Classify up to `ia_batch_size` unscored tenders, sequentially.

        Tenders the user marked as participating or sent to the trash are
        skipped. A tender whose result cannot be stored is reported as an
        error and the batch continues. Raises LLMNotConfigured when no API
        key is set.
        """
        if not self.configured:
            raise LLMNotConfigured()

        factory = session_factory or get_session_factory()
        async with factory() as session:
            pending = await db_ops.list_pending_classification(
                session, self.settings.ia_batch_size, profile_id
            )
            if not pending:
                return ClassifyPendingResult(
                    processed=0, message="Nenhuma licitação pendente para revisão IA."
                )

            logger.info(f"Classifying {len(pending)} pending licitações")
            results = []
            for tender, profile in pending:
                keywords = profile.keywords if profile else None
                states = profile.states if profile else None
                try:
                    results.append(await self.classify_and_store(session, tender, keywords, states))
                except StorageError as e:
                    logger.error(f"Classification of {tender.id} not stored: {e}")
                    results.append(ClassificationOutcome(id=tender.id, status="error", error=str(e)))

        return ClassifyPendingResult(processed=len(results), results=results)
