"""Tests for procedural phase mapping."""

from __future__ import annotations

from licitagraph.storage.schemas import Phase
from licitagraph.timeline.phases import PHASE_ORDER, PHASE_SEQUENCE, phase_for_event_type, semantic_order


def test_phase_sequence_covers_every_phase_once() -> None:
    assert set(PHASE_SEQUENCE) == set(Phase)
    assert len(PHASE_SEQUENCE) == len(Phase)
    assert PHASE_ORDER[Phase.PUBLICATION] == 1
    assert PHASE_ORDER[Phase.OTHER] == len(PHASE_SEQUENCE)


def test_lifecycle_order() -> None:
    assert (
        semantic_order(Phase.PUBLICATION)
        < semantic_order(Phase.PUBLIC_SESSION)
        < semantic_order(Phase.QUALIFICATION)
        < semantic_order(Phase.RATIFICATION)
        < semantic_order(Phase.SIGNATURE)
        < semantic_order(Phase.PAYMENT)
    )


def test_exact_phase_labels() -> None:
    assert phase_for_event_type("SESSAO_PUBLICA") == Phase.PUBLIC_SESSION
    assert phase_for_event_type("homologacao") == Phase.RATIFICATION
    assert phase_for_event_type("OUTRO") == Phase.OTHER


def test_keyword_mapping() -> None:
    assert phase_for_event_type("PUBLICACAO_EDITAL") == Phase.PUBLICATION
    assert phase_for_event_type("ABERTURA_PROPOSTAS") == Phase.PUBLIC_SESSION
    assert phase_for_event_type("prazo de impugnação") == Phase.CLARIFICATIONS
    assert phase_for_event_type("ENVIO_PROPOSTA") == Phase.PROPOSAL
    assert phase_for_event_type("ENTREGA_DOCUMENTOS_HABILITACAO") == Phase.QUALIFICATION
    assert phase_for_event_type("ENTREGA_OBJETO") == Phase.EXECUTION
    assert phase_for_event_type("PRAZO_RECURSO") == Phase.APPEALS
    assert phase_for_event_type("ASSINATURA_CONTRATO") == Phase.SIGNATURE
    assert phase_for_event_type("PAGAMENTO_FATURA") == Phase.PAYMENT
    assert phase_for_event_type("VIGENCIA_GARANTIA") == Phase.EXECUTION


def test_unknown_labels_map_to_other() -> None:
    assert phase_for_event_type("REUNIAO_INTERNA") == Phase.OTHER
    assert phase_for_event_type("") == Phase.OTHER
    assert phase_for_event_type(None) == Phase.OTHER
