"""Procedural phase ordering for bidding timelines."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from licitagraph.normalization import fold_text
from licitagraph.storage.schemas import Phase

PHASE_SEQUENCE: List[Phase] = [
    Phase.PUBLICATION,
    Phase.CLARIFICATIONS,
    Phase.REGISTRATION,
    Phase.PROPOSAL,
    Phase.PUBLIC_SESSION,
    Phase.BIDDING,
    Phase.JUDGMENT,
    Phase.QUALIFICATION,
    Phase.APPEALS,
    Phase.AWARD,
    Phase.RATIFICATION,
    Phase.SIGNATURE,
    Phase.EXECUTION,
    Phase.PAYMENT,
    Phase.WARRANTY,
    Phase.OTHER,
]

PHASE_ORDER: Dict[Phase, int] = {phase: index for index, phase in enumerate(PHASE_SEQUENCE, start=1)}

_PHASE_VALUES = {phase.value for phase in Phase}

# First match wins. SESSAO must be checked before PUBLICA ("SESSAO_PUBLICA"),
# ABERTURA before PROPOSTA ("ABERTURA_PROPOSTAS") and the document delivery
# before the generic ENTREGA.
_EVENT_TYPE_KEYWORDS: List[Tuple[str, Phase]] = [
    ("SESSAO", Phase.PUBLIC_SESSION),
    ("ABERTURA", Phase.PUBLIC_SESSION),
    ("PUBLICA", Phase.PUBLICATION),
    ("EDITAL", Phase.PUBLICATION),
    ("AVISO", Phase.PUBLICATION),
    ("IMPUGNA", Phase.CLARIFICATIONS),
    ("ESCLARECIMENTO", Phase.CLARIFICATIONS),
    ("CREDENCIAMENTO", Phase.REGISTRATION),
    ("CADASTR", Phase.REGISTRATION),
    ("LANCE", Phase.BIDDING),
    ("DISPUTA", Phase.BIDDING),
    ("PROPOSTA", Phase.PROPOSAL),
    ("AMOSTRA", Phase.JUDGMENT),
    ("JULGAMENTO", Phase.JUDGMENT),
    ("ENTREGA_DOCUMENTO", Phase.QUALIFICATION),
    ("HABILITACAO", Phase.QUALIFICATION),
    ("CONTRARRAZ", Phase.APPEALS),
    ("RECURSO", Phase.APPEALS),
    ("ADJUDICA", Phase.AWARD),
    ("HOMOLOGA", Phase.RATIFICATION),
    ("ASSINATURA", Phase.SIGNATURE),
    ("VIGENCIA", Phase.EXECUTION),
    ("ENTREGA", Phase.EXECUTION),
    ("EXECUCAO", Phase.EXECUTION),
    ("ORDEM_DE_SERVICO", Phase.EXECUTION),
    ("PAGAMENTO", Phase.PAYMENT),
    ("FATURA", Phase.PAYMENT),
    ("GARANTIA", Phase.WARRANTY),
    ("CONTRATO", Phase.SIGNATURE),
]


def phase_for_event_type(event_type: Optional[str]) -> Phase:
    """Derive the procedural phase from an extractor event label."""
    label = fold_text(event_type or "").replace(" ", "_")
    if not label:
        return Phase.OTHER
    if label in _PHASE_VALUES:
        return Phase(label)
    for keyword, phase in _EVENT_TYPE_KEYWORDS:
        if keyword in label:
            return phase
    return Phase.OTHER


def semantic_order(phase: Phase) -> int:
    return PHASE_ORDER.get(phase, len(PHASE_SEQUENCE))
