"""Условия лицензии: значение-объект, частичный патч и чистые функции diff/merge.

``diff_terms`` и ``merge_terms`` - единственные примитивы, которыми пользуется
движок переговоров; обе функции тотальны для корректно типизированного входа.
"""
import json
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ValidationError


class Exclusivity(str, Enum):
    """Тип эксклюзивности лицензии"""
    EXCLUSIVE = "exclusive"
    NON_EXCLUSIVE = "non-exclusive"
    CATEGORY_EXCLUSIVE = "category-exclusive"


class _Clause(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class Fee(_Clause):
    """Вознаграждение"""
    amount: float = Field(..., ge=0)
    currency: str = Field(..., min_length=1)


class PaymentTerms(_Clause):
    due_days: int = Field(..., ge=0)
    late_fee_pct: Optional[float] = Field(None, ge=0)
    method: Optional[Literal["bank", "card", "crypto"]] = None


class TaxTerms(_Clause):
    responsible_party: Literal["owner", "licensee"]
    vat_registered: Optional[bool] = None


class InvoicingInfo(_Clause):
    entity_name: str
    email: Optional[str] = None
    address: Optional[str] = None


class DeliverySpecs(_Clause):
    format: str
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    color: Optional[str] = None
    dpi: Optional[int] = Field(None, gt=0)


class FeesPaidCap(_Clause):
    type: Literal["fees_paid"] = "fees_paid"


class FixedCap(_Clause):
    type: Literal["fixed"] = "fixed"
    amount: float = Field(..., ge=0)


LiabilityCap = Union[FeesPaidCap, FixedCap]


class TerminationTerms(_Clause):
    for_convenience: Optional[bool] = None
    notice_days: Optional[int] = Field(None, ge=0)
    breach_cure_days: Optional[int] = Field(None, ge=0)
    takedown_days: Optional[int] = Field(None, ge=0)


class DisputesTerms(_Clause):
    mode: Literal["courts", "arbitration"]
    law: str
    venue: Optional[str] = None
    arb_rules: Optional[str] = None
    seat: Optional[str] = None


class OnchainBlock(_Clause):
    chain: Optional[str] = None
    contract_address: Optional[str] = None
    token_id: Optional[str] = None
    pay_gas_party: Optional[Literal["owner", "licensee"]] = None


class Royalties(_Clause):
    rate_bps: int = Field(..., ge=0, le=10000)  # 500 = 5%
    receiver: Optional[str] = None


class MetadataBlock(_Clause):
    image_cid: Optional[str] = None
    metadata_cid: Optional[str] = None
    mutable: Optional[bool] = None


class LicenseTerms(_Clause):
    """Согласуемые условия лицензии (неизменяемы в пределах версии)"""

    purpose: str
    term_months: int = Field(..., ge=0)
    territory: Union[str, List[str]]
    media: List[str]
    exclusivity: Exclusivity
    start_date: Optional[date] = None
    deliverables: Optional[str] = None
    credit_required: Optional[bool] = None
    usage_notes: Optional[str] = None
    fee: Optional[Fee] = None
    sublicense: Optional[bool] = None
    derivative_edits: Optional[List[str]] = None

    # Административные и платежные условия
    effective_date: Optional[date] = None
    credit_line: Optional[str] = None
    payment_terms: Optional[PaymentTerms] = None
    tax: Optional[TaxTerms] = None
    invoicing: Optional[InvoicingInfo] = None

    # Бренд и использование
    brand_guidelines_url: Optional[str] = None
    preapproval_required: Optional[bool] = None
    approval_sla_days: Optional[int] = Field(None, ge=0)
    prohibited_uses: Optional[List[str]] = None
    usage_restrictions: Optional[List[str]] = None
    delivery_specs: Optional[DeliverySpecs] = None

    # Юридические условия и риски
    confidentiality_term_months: Optional[int] = Field(None, ge=0)
    liability_cap: Optional[LiabilityCap] = None
    termination: Optional[TerminationTerms] = None
    disputes: Optional[DisputesTerms] = None
    injunctive_relief: Optional[bool] = None

    # On-chain / NFT
    onchain: Optional[OnchainBlock] = None
    royalties: Optional[Royalties] = None
    metadata: Optional[MetadataBlock] = None


# Порядок полей определяет порядок diff
TERM_FIELDS = tuple(LicenseTerms.model_fields)
REQUIRED_TERM_FIELDS = frozenset(
    name for name, field in LicenseTerms.model_fields.items() if field.is_required()
)


class LicenseTermsPatch(_Clause):
    """Частичные условия: предложенное изменение.

    Присутствующие ключи определяются через ``model_fields_set``; явный
    ``null`` допустим только для необязательных полей.
    """

    purpose: Optional[str] = None
    term_months: Optional[int] = Field(None, ge=0)
    territory: Optional[Union[str, List[str]]] = None
    media: Optional[List[str]] = None
    exclusivity: Optional[Exclusivity] = None
    start_date: Optional[date] = None
    deliverables: Optional[str] = None
    credit_required: Optional[bool] = None
    usage_notes: Optional[str] = None
    fee: Optional[Fee] = None
    sublicense: Optional[bool] = None
    derivative_edits: Optional[List[str]] = None
    effective_date: Optional[date] = None
    credit_line: Optional[str] = None
    payment_terms: Optional[PaymentTerms] = None
    tax: Optional[TaxTerms] = None
    invoicing: Optional[InvoicingInfo] = None
    brand_guidelines_url: Optional[str] = None
    preapproval_required: Optional[bool] = None
    approval_sla_days: Optional[int] = Field(None, ge=0)
    prohibited_uses: Optional[List[str]] = None
    usage_restrictions: Optional[List[str]] = None
    delivery_specs: Optional[DeliverySpecs] = None
    confidentiality_term_months: Optional[int] = Field(None, ge=0)
    liability_cap: Optional[LiabilityCap] = None
    termination: Optional[TerminationTerms] = None
    disputes: Optional[DisputesTerms] = None
    injunctive_relief: Optional[bool] = None
    onchain: Optional[OnchainBlock] = None
    royalties: Optional[Royalties] = None
    metadata: Optional[MetadataBlock] = None

    @model_validator(mode="after")
    def _required_fields_not_null(self):
        for name in REQUIRED_TERM_FIELDS & self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"'{name}' cannot be cleared")
        return self

    def changes(self) -> Dict[str, Any]:
        """Только переданные ключи патча"""
        return {name: getattr(self, name) for name in TERM_FIELDS if name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


@dataclass(frozen=True)
class TermDiff:
    """Различие одного поля условий"""
    key: str
    before: Any
    after: Any


def _plain(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    return value


def _canonical(value: Any) -> str:
    return json.dumps(_plain(value), sort_keys=True, default=str)


def diff_terms(a: LicenseTerms, b: LicenseTerms) -> List[TermDiff]:
    """Поля, в которых ``b`` отличается от ``a``, в порядке объявления"""
    diffs = []
    for key in TERM_FIELDS:
        before = getattr(a, key, None)
        after = getattr(b, key, None)
        if _canonical(before) != _canonical(after):
            diffs.append(TermDiff(key=key, before=_plain(before), after=_plain(after)))
    return diffs


def merge_terms(base: LicenseTerms, patch: Optional[LicenseTermsPatch]) -> LicenseTerms:
    """Поверхностное наложение патча на базовые условия"""
    if patch is None or patch.is_empty():
        return base
    return base.model_copy(update=patch.changes())


def parse_terms(data: Union[LicenseTerms, Mapping[str, Any]]) -> LicenseTerms:
    """Валидация условий, ошибки pydantic превращаются в ValidationError"""
    if isinstance(data, LicenseTerms):
        return data
    try:
        return LicenseTerms.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid license terms: {e.errors(include_url=False)}") from e


def parse_patch(data: Union[LicenseTermsPatch, Mapping[str, Any], None]) -> Optional[LicenseTermsPatch]:
    """Валидация патча условий"""
    if data is None or isinstance(data, LicenseTermsPatch):
        return data
    try:
        return LicenseTermsPatch.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid terms patch: {e.errors(include_url=False)}") from e


def stringify_territory(territory: Union[str, List[str], None]) -> str:
    if isinstance(territory, list):
        return ", ".join(territory)
    return territory or ""


def format_money(fee: Optional[Fee]) -> str:
    if fee is None:
        return "—"
    amount = f"{fee.amount:,.2f}".rstrip("0").rstrip(".")
    return f"{amount} {fee.currency}"
