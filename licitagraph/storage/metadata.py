"""Typed per-entity metadata variants.

The extractor emits metadata as a loose mapping whose keys follow its own
camelCase Portuguese spelling (``tipoEvento``, ``dataInicio`` ...). Each entity
type has a small known shape; every variant keeps unknown keys, and anything
that fails validation falls back to :class:`GenericMetadata`.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from licitagraph.normalization import (
    extract_number,
    fold_text,
    normalize_date,
    normalize_monetary,
    normalize_percentage,
    normalize_time,
)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


_FALSE_WORDS = {"FALSE", "F", "NO", "N", "NAO", "0", "OPCIONAL", "FACULTATIVO"}


def _flag(value: Any, default: bool) -> bool:
    """Loose yes/no reading of extractor flags; only known negatives read as False."""
    if value is None or isinstance(value, bool):
        return default if value is None else value
    if isinstance(value, (int, float)):
        return value != 0
    text = fold_text(str(value)).strip()
    if not text:
        return default
    return text not in _FALSE_WORDS


class _MetadataBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def composite_parts(self) -> Tuple[str, str]:
        """(category, item) pair used to build a requirement-style normalized value."""
        return "", ""


class DeadlineMetadata(_MetadataBase):
    """Deadlines and dates."""

    kind: Literal["deadline"] = "deadline"
    event_type: str = Field(default="OUTRO", validation_alias=_alias("event_type", "tipoEvento"))
    start_date: Optional[str] = Field(default=None, validation_alias=_alias("start_date", "dataInicio"))
    end_date: Optional[str] = Field(default=None, validation_alias=_alias("end_date", "dataFim"))
    time_limit: Optional[str] = Field(default=None, validation_alias=_alias("time_limit", "horaLimite"))
    business_days: Optional[bool] = Field(default=None, validation_alias=_alias("business_days", "diasUteis"))
    duration_days: Optional[int] = Field(default=None, validation_alias=_alias("duration_days", "duracaoDias"))

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _normalize_dates(cls, value: Any) -> Optional[str]:
        if value in (None, ""):
            return None
        return normalize_date(str(value))

    @field_validator("time_limit", mode="before")
    @classmethod
    def _normalize_time(cls, value: Any) -> Optional[str]:
        if value in (None, ""):
            return None
        return normalize_time(str(value))

    @field_validator("business_days", mode="before")
    @classmethod
    def _business_days(cls, value: Any) -> Optional[bool]:
        return None if value in (None, "") else _flag(value, default=False)

    @field_validator("duration_days", mode="before")
    @classmethod
    def _duration_days(cls, value: Any) -> Optional[int]:
        # "10 dias", "dez dias úteis" and 10.0 all count.
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        return extract_number(str(value))

    @field_validator("event_type", mode="before")
    @classmethod
    def _default_event_type(cls, value: Any) -> str:
        return str(value or "OUTRO")


class PenaltyMetadata(_MetadataBase):
    """Fines and sanctions."""

    kind: Literal["penalty"] = "penalty"
    infraction_type: str = Field(default="OUTRO", validation_alias=_alias("infraction_type", "tipoInfracao"))
    percentage: Optional[float] = Field(default=None, validation_alias=_alias("percentage", "percentual"))
    fixed_amount: Optional[float] = Field(default=None, validation_alias=_alias("fixed_amount", "valorFixo"))
    calculation_base: Optional[str] = Field(
        default=None, validation_alias=_alias("calculation_base", "baseCalculo")
    )
    application_condition: Optional[str] = Field(
        default=None, validation_alias=_alias("application_condition", "condicaoAplicacao")
    )

    @field_validator("percentage", mode="before")
    @classmethod
    def _normalize_percentage(cls, value: Any) -> Optional[float]:
        if value in (None, ""):
            return None
        # Bare numbers are percentage points ("10" means 10%).
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return normalize_percentage(f"{value}%")
        text = str(value)
        return normalize_percentage(text if "%" in text or "CENTO" in text.upper() else f"{text}%")

    @field_validator("fixed_amount", mode="before")
    @classmethod
    def _normalize_amount(cls, value: Any) -> Optional[float]:
        if value in (None, ""):
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return normalize_monetary(str(value))

    @field_validator("infraction_type", mode="before")
    @classmethod
    def _default_infraction(cls, value: Any) -> str:
        return str(value or "OUTRO")


class RequirementMetadata(_MetadataBase):
    """Qualification and technical requirements."""

    kind: Literal["requirement"] = "requirement"
    category: str = Field(default="OUTRO", validation_alias=_alias("category", "categoria"))
    mandatory: bool = Field(default=True, validation_alias=_alias("mandatory", "obrigatorio"))
    related_item: Optional[str] = Field(default=None, validation_alias=_alias("related_item", "itemRelacionado"))
    specification: Optional[str] = Field(default=None, validation_alias=_alias("specification", "especificacao"))

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> str:
        return str(value or "OUTRO")

    @field_validator("mandatory", mode="before")
    @classmethod
    def _mandatory_unless_false(cls, value: Any) -> bool:
        return _flag(value, default=True)

    def composite_parts(self) -> Tuple[str, str]:
        return self.category, self.related_item or ""


class DeliveryRuleMetadata(_MetadataBase):
    """Delivery conditions."""

    kind: Literal["delivery_rule"] = "delivery_rule"
    location: Optional[str] = Field(default=None, validation_alias=_alias("location", "localEntrega"))
    deadline: Optional[str] = Field(default=None, validation_alias=_alias("deadline", "prazoEntrega"))
    transport_conditions: Optional[str] = Field(
        default=None, validation_alias=_alias("transport_conditions", "condicoesTransporte")
    )
    packaging: Optional[str] = Field(default=None, validation_alias=_alias("packaging", "embalagem"))
    receiving_hours: Optional[str] = Field(
        default=None, validation_alias=_alias("receiving_hours", "horarioRecebimento")
    )


class RiskMetadata(_MetadataBase):
    """Risk clauses."""

    kind: Literal["risk"] = "risk"
    risk_type: str = Field(default="OUTRO", validation_alias=_alias("risk_type", "tipoRisco"))
    severity: str = Field(default="MEDIA", validation_alias=_alias("severity", "gravidade"))
    activation_condition: Optional[str] = Field(
        default=None, validation_alias=_alias("activation_condition", "condicaoAtivacao")
    )

    @field_validator("risk_type", mode="before")
    @classmethod
    def _default_risk_type(cls, value: Any) -> str:
        return str(value or "OUTRO")

    @field_validator("severity", mode="before")
    @classmethod
    def _default_severity(cls, value: Any) -> str:
        return str(value or "MEDIA")


class TechnicalCertificateMetadata(_MetadataBase):
    """Technical capability certificates."""

    kind: Literal["technical_certificate"] = "technical_certificate"
    certificate_type: str = Field(
        default="ATESTADO", validation_alias=_alias("certificate_type", "tipoCertidao")
    )
    issuer: Optional[str] = Field(default=None, validation_alias=_alias("issuer", "emissor"))
    minimum_validity: Optional[str] = Field(
        default=None, validation_alias=_alias("minimum_validity", "validadeMinima")
    )
    minimum_quantity: Optional[float] = Field(
        default=None, validation_alias=_alias("minimum_quantity", "quantidadeMinima")
    )
    requirement_description: Optional[str] = Field(
        default=None, validation_alias=_alias("requirement_description", "descricaoExigencia")
    )

    @field_validator("certificate_type", mode="before")
    @classmethod
    def _default_certificate_type(cls, value: Any) -> str:
        return str(value or "ATESTADO")

    def composite_parts(self) -> Tuple[str, str]:
        return "", self.certificate_type


class MandatoryDocumentMetadata(_MetadataBase):
    """Documents bidders must submit."""

    kind: Literal["mandatory_document"] = "mandatory_document"
    document_type: str = Field(default="OUTRO", validation_alias=_alias("document_type", "tipoDocumento"))
    validity_period: Optional[str] = Field(
        default=None, validation_alias=_alias("validity_period", "prazoValidade")
    )
    issuer: Optional[str] = Field(default=None, validation_alias=_alias("issuer", "emissor"))
    purpose: Optional[str] = Field(default=None, validation_alias=_alias("purpose", "finalidade"))

    @field_validator("document_type", mode="before")
    @classmethod
    def _default_document_type(cls, value: Any) -> str:
        return str(value or "OUTRO")

    def composite_parts(self) -> Tuple[str, str]:
        return self.document_type, ""


class ObligationMetadata(_MetadataBase):
    """Obligation details (who must do what, and whether it is mandatory)."""

    kind: Literal["obligation"] = "obligation"
    action: str = Field(default="", validation_alias=_alias("action", "acao"))
    responsible: str = Field(default="LICITANTE", validation_alias=_alias("responsible", "responsavel"))
    mandatory: bool = Field(default=True, validation_alias=_alias("mandatory", "obrigatorio"))
    linked_deadline_key: Optional[str] = Field(
        default=None, validation_alias=_alias("linked_deadline_key", "linkedDeadlineKey")
    )

    @field_validator("responsible", mode="before")
    @classmethod
    def _default_responsible(cls, value: Any) -> str:
        return str(value or "LICITANTE")

    @field_validator("mandatory", mode="before")
    @classmethod
    def _mandatory_unless_false(cls, value: Any) -> bool:
        return _flag(value, default=True)

    @field_validator("linked_deadline_key", mode="before")
    @classmethod
    def _empty_key_is_none(cls, value: Any) -> Optional[str]:
        return str(value) if value else None


class GenericMetadata(_MetadataBase):
    """Fallback bag for types without a known shape."""

    kind: Literal["generic"] = "generic"
    data: Dict[str, Any] = Field(default_factory=dict)


EntityMetadata = Annotated[
    Union[
        DeadlineMetadata,
        PenaltyMetadata,
        RequirementMetadata,
        DeliveryRuleMetadata,
        RiskMetadata,
        TechnicalCertificateMetadata,
        MandatoryDocumentMetadata,
        ObligationMetadata,
        GenericMetadata,
    ],
    Field(discriminator="kind"),
]

_METADATA_BY_TYPE: Dict[str, type[_MetadataBase]] = {
    "deadline": DeadlineMetadata,
    "date": DeadlineMetadata,
    "penalty": PenaltyMetadata,
    "sanction": PenaltyMetadata,
    "requirement": RequirementMetadata,
    "delivery_rule": DeliveryRuleMetadata,
    "risk": RiskMetadata,
    "technical_certificate": TechnicalCertificateMetadata,
    "mandatory_document": MandatoryDocumentMetadata,
    "obligation": ObligationMetadata,
}


def build_metadata(entity_type: str, raw: Dict[str, Any] | None) -> _MetadataBase:
    """Validate ``raw`` against the shape registered for ``entity_type``."""
    payload = dict(raw or {})
    payload.pop("kind", None)
    model = _METADATA_BY_TYPE.get(entity_type)
    if model is None:
        return GenericMetadata(data=payload)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.debug(
            "Metadata did not match known shape; keeping generic map",
            entity_type=entity_type,
            errors=exc.error_count(),
        )
        return GenericMetadata(data=payload)
