"""
Tender triage rules. This is the one place user-driven mutations are applied.

status_interno is a closed enum (NULL = new). Rules enforced here:
  - sending to the trash clears participation and the IA relevance flags
  - marking participation on a new or trashed tender moves it to em_analise
  - a single update cannot both trash a tender and mark it as participating
"""
import logging
from typing import Optional

from licitaradar.core.errors import InvalidStatusTransition
from licitaradar.models.db_models import TenderRow
from licitaradar.models.schemas import ChecklistItem, TenderStatus, TenderUpdate

logger = logging.getLogger(__name__)

DEFAULT_CHECKLIST_ITEMS: list[tuple[str, str]] = [
    ("habilitacao_juridica", "Habilitação jurídica preparada"),
    ("regularidade_fiscal", "Regularidade fiscal e trabalhista ok"),
    ("certidoes_especificas", "Certidões específicas do edital separadas"),
    ("qualificacao_tecnica", "Documentos de qualificação técnica preparados"),
    ("proposta_comercial_montada", "Proposta comercial montada"),
    ("proposta_cadastrada_portal", "Proposta cadastrada no portal"),
    ("anexos_conferidos", "Anexos conferidos no portal"),
    ("revisao_final", "Revisão final feita (4-olhos)"),
]


def default_checklist() -> list[ChecklistItem]:
    return [ChecklistItem(id=item_id, label=label) for item_id, label in DEFAULT_CHECKLIST_ITEMS]


def normalize_checklist(items: Optional[list[ChecklistItem]]) -> list[ChecklistItem]:
    """
    Map the provided items onto the default checklist, keeping each item's
    `done` state. Unknown ids are dropped; duplicate ids keep the first one.
    """
    provided: dict[str, ChecklistItem] = {}
    for item in items or []:
        provided.setdefault(item.id, item)

    dropped = set(provided) - {item_id for item_id, _ in DEFAULT_CHECKLIST_ITEMS}
    if dropped:
        logger.debug(f"Ignoring unknown checklist items: {sorted(dropped)}")

    return [
        ChecklistItem(id=d.id, label=d.label, done=provided[d.id].done if d.id in provided else False)
        for d in default_checklist()
    ]


def _current_status(row: TenderRow) -> Optional[TenderStatus]:
    return TenderStatus(row.status_interno) if row.status_interno else None


def _send_to_trash(row: TenderRow) -> None:
    row.status_interno = TenderStatus.LIXEIRA.value
    row.vai_participar = False
    row.ia_needs_review = False
    row.ia_filtrada = False


def apply_management_update(row: TenderRow, changes: TenderUpdate) -> TenderRow:
    """Mutate a TenderRow in place according to the triage rules. Caller commits."""
    if changes.status_interno is not None and changes.clear_status:
        raise InvalidStatusTransition("status_interno and clear_status are mutually exclusive")
    if changes.status_interno == TenderStatus.LIXEIRA and changes.vai_participar:
        raise InvalidStatusTransition("A tender in the trash cannot be marked as participating")

    if changes.is_viewed is not None:
        row.is_viewed = changes.is_viewed
    if changes.notas is not None:
        row.notas = changes.notas
    if changes.data_limite_interna is not None:
        row.data_limite_interna = changes.data_limite_interna or None
    if changes.gestao_checklist is not None:
        row.gestao_checklist = [i.model_dump() for i in normalize_checklist(changes.gestao_checklist)]

    if changes.clear_status:
        row.status_interno = None
    elif changes.status_interno == TenderStatus.LIXEIRA:
        _send_to_trash(row)
    elif changes.status_interno is not None:
        row.status_interno = changes.status_interno.value

    if changes.vai_participar is True:
        row.vai_participar = True
        if _current_status(row) in (None, TenderStatus.LIXEIRA):
            row.status_interno = TenderStatus.EM_ANALISE.value
    elif changes.vai_participar is False:
        row.vai_participar = False

    # Invariant: trash and participation never coexist
    if _current_status(row) == TenderStatus.LIXEIRA:
        row.vai_participar = False

    logger.debug(
        f"Tender {row.id}: status={row.status_interno or 'novo'} participating={row.vai_participar}"
    )
    return row
