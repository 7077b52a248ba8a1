"""Builders for the Correios pre-postagem request body.

The pre-postagem API is strict about types: every numeric field of the
postal object must travel as a JSON string. All coercion goes through
:func:`stringify_postal_object` so the rule lives in one place.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Mapping, NamedTuple, Optional

from integrations.correios.dimensions import PackageDims, validate_dimensions

logger = logging.getLogger(__name__)

INVOICE_KEY_LENGTH = 44
DEFAULT_DECLARED_VALUE_CENTS = 10000
CONTENT_DECLARATION_DESCRIPTION = "Produtos diversos"
CONTENT_DECLARATION_FLAG = "possuiDeclaracaoConteudo"

# (tipoObjeto, codigoFormatoObjeto)
PACKAGE_FORMATS = {
    "envelope": ("ENVELOPE", "1"),
    "caixa": ("CAIXA", "2"),
    "box": ("CAIXA", "2"),
    "pacote": ("CAIXA", "2"),
    "cilindro": ("CILINDRO", "3"),
    "cylinder": ("CILINDRO", "3"),
}

_NUMERIC_FIELDS = ("codigoFormatoObjeto", "peso", "vlrDeclarado")
_DIMENSION_FIELDS = ("altura", "largura", "comprimento")
_DECLARATION_FIELDS = ("quantidade", "valor", "peso")


def only_digits(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def has_valid_invoice_key(invoice_key: Optional[str]) -> bool:
    """True only for an NF-e access key with exactly 44 digits."""
    return len(only_digits(invoice_key)) == INVOICE_KEY_LENGTH


class ParsedPhone(NamedTuple):
    area_code: str
    number: str
    kind: str  # "mobile" | "landline"


def parse_br_phone(phone: Optional[str]) -> Optional[ParsedPhone]:
    """Split a Brazilian phone into DDD and subscriber number.

    Returns ``None`` when fewer than 10 digits remain, in which case no phone
    field is sent at all.
    """
    digits = only_digits(phone)
    while len(digits) > 11 and digits.startswith("55"):
        digits = digits[2:]
    if len(digits) > 11:
        digits = digits[-11:]

    if len(digits) < 10:
        return None
    area, number = digits[:2], digits[2:]
    if len(digits) == 10:
        return ParsedPhone(area, number, "landline")
    if number.startswith("9"):
        return ParsedPhone(area, number, "mobile")
    # 11 digits without the mobile 9: drop the extra digit
    return ParsedPhone(area, number[1:], "landline")


def _phone_fields(phone: Optional[str]) -> Dict[str, str]:
    parsed = parse_br_phone(phone)
    if parsed is None:
        return {}
    if parsed.kind == "mobile":
        return {"dddCelular": parsed.area_code, "celular": parsed.number}
    return {"dddTelefone": parsed.area_code, "telefone": parsed.number}


def build_party(
    *,
    name: Optional[str],
    cpf_cnpj: Optional[str],
    street: Optional[str],
    number: Optional[str],
    complement: Optional[str],
    neighborhood: Optional[str],
    city: Optional[str],
    state: Optional[str],
    cep: Optional[str],
    phone: Optional[str] = None,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    """Sender/recipient block (``remetente``/``destinatario``)."""
    party: Dict[str, Any] = {
        "nome": name or "",
        "cpfCnpj": only_digits(cpf_cnpj),
        "endereco": {
            "logradouro": street or "",
            "numero": str(number or ""),
            "complemento": complement or "",
            "bairro": neighborhood or "",
            "cidade": city or "",
            "uf": (state or "").strip().upper(),
            "cep": only_digits(cep),
        },
    }
    party.update(_phone_fields(phone))
    if email:
        party["email"] = email
    return party


def _number_to_str(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def stringify_postal_object(postal_object: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``postal_object`` with every numeric field as ``str``."""
    result = copy.deepcopy(dict(postal_object))
    for key in _NUMERIC_FIELDS:
        if key in result:
            result[key] = _number_to_str(result[key])
    dimensao = result.get("dimensao")
    if isinstance(dimensao, dict):
        for key in _DIMENSION_FIELDS:
            if key in dimensao:
                dimensao[key] = _number_to_str(dimensao[key])
    for item in result.get("itensDeclaracaoConteudo") or []:
        for key in _DECLARATION_FIELDS:
            if key in item:
                item[key] = _number_to_str(item[key])
    return result


def format_declared_value(cents: Optional[int]) -> str:
    """Convert minor units to ``"123.45"``; missing/zero uses the 100.00 placeholder."""
    if not cents:
        cents = DEFAULT_DECLARED_VALUE_CENTS
    value = (Decimal(int(cents)) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return str(value)


def package_format(package_type: Optional[str]) -> tuple[str, str]:
    return PACKAGE_FORMATS.get((package_type or "").strip().lower(), PACKAGE_FORMATS["caixa"])


def build_postal_object(
    package_type: Optional[str],
    dims: PackageDims,
    declared_value_cents: Optional[int] = None,
    include_content_declaration: bool = False,
) -> Dict[str, Any]:
    """Build the ``objetoPostal`` sub-document for one package."""
    tipo, formato = package_format(package_type)
    declared = format_declared_value(declared_value_cents)
    postal_object: Dict[str, Any] = {
        "tipoObjeto": tipo,
        "codigoFormatoObjeto": formato,
        "peso": dims.weight,
        "objetosProibidos": False,
        "vlrDeclarado": declared,
        "dimensao": {
            "altura": dims.height,
            "largura": dims.width,
            "comprimento": dims.length,
        },
    }
    if include_content_declaration:
        postal_object["itensDeclaracaoConteudo"] = [
            {
                "conteudo": CONTENT_DECLARATION_DESCRIPTION,
                "quantidade": 1,
                "valor": declared,
                "peso": dims.weight,
            }
        ]
    return stringify_postal_object(postal_object)


@dataclass
class Recipient:
    name: str = ""
    cpf_cnpj: Optional[str] = None
    street: str = ""
    number: str = ""
    complement: Optional[str] = None
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    cep: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Recipient":
        data = data or {}
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__ if data.get(k) is not None})


@dataclass
class LabelRequest:
    """Label generation input as received from the caller."""

    organization_id: str
    recipient: Recipient
    sale_id: Optional[str] = None
    package: Dict[str, Any] = field(default_factory=dict)
    service_code: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LabelRequest":
        return cls(
            organization_id=data.get("organization_id"),
            sale_id=data.get("sale_id") or None,
            recipient=Recipient.from_dict(data.get("recipient")),
            package=dict(data.get("package") or {}),
            service_code=data.get("service_code") or None,
            invoice_number=data.get("invoice_number") or None,
            invoice_key=data.get("invoice_key") or None,
        )

    @property
    def declared_value_cents(self) -> Optional[int]:
        value = self.package.get("declared_value_cents")
        return int(value) if value else None


@dataclass
class AssembledPayload:
    payload: Dict[str, Any]
    dims: PackageDims
    service_code: str
    has_invoice: bool


def assemble_payload(config: Any, request: LabelRequest) -> AssembledPayload:
    """Build the full pre-postagem body from a tenant config and a label request.

    ``config`` is anything exposing the ``correios_config`` columns as
    attributes (normally a :class:`app.models.tables.CorreiosConfig`).
    """
    service_code = request.service_code or config.default_service_code
    has_invoice = has_valid_invoice_key(request.invoice_key)

    dims = validate_dimensions(
        PackageDims.from_mapping(request.package),
        PackageDims(
            weight=config.default_weight_grams,
            height=config.default_height_cm,
            width=config.default_width_cm,
            length=config.default_length_cm,
        ),
        service_code,
    )
    postal_object = build_postal_object(
        config.default_package_type,
        dims,
        request.declared_value_cents,
        include_content_declaration=not has_invoice,
    )

    recipient = request.recipient
    payload: Dict[str, Any] = {
        "idCorreios": config.id_correios,
        "codigoServico": service_code,
        "remetente": build_party(
            name=config.sender_name,
            cpf_cnpj=config.sender_cpf_cnpj,
            street=config.sender_street,
            number=config.sender_number,
            complement=config.sender_complement,
            neighborhood=config.sender_neighborhood,
            city=config.sender_city,
            state=config.sender_state,
            cep=config.sender_cep,
            phone=config.sender_phone,
            email=config.sender_email,
        ),
        "destinatario": build_party(
            name=recipient.name,
            cpf_cnpj=recipient.cpf_cnpj,
            street=recipient.street,
            number=recipient.number,
            complement=recipient.complement,
            neighborhood=recipient.neighborhood,
            city=recipient.city,
            state=recipient.state,
            cep=recipient.cep,
            phone=recipient.phone,
            email=recipient.email,
        ),
        "objetosPostais": [postal_object],
    }
    if has_invoice:
        payload["documentoFiscal"] = {
            "tipo": "NFE",
            "numero": only_digits(request.invoice_number),
            "chave": only_digits(request.invoice_key),
        }
    else:
        payload[CONTENT_DECLARATION_FLAG] = "S"
        if request.invoice_key:
            logger.warning(
                "Chave de NF-e invalida ignorada | org=%s | digitos=%s",
                request.organization_id,
                len(only_digits(request.invoice_key)),
            )

    return AssembledPayload(payload=payload, dims=dims, service_code=service_code, has_invoice=has_invoice)


# ----------------------------------------------------------------------
# Retry variants. Each takes the assembled payload and returns a new one.

def _postal_object_of(payload: Mapping[str, Any]) -> Dict[str, Any]:
    objects = payload.get("objetosPostais") or []
    if objects:
        return objects[0]
    return payload.get("objetoPostal") or {}


def build_variant_a(base: Mapping[str, Any]) -> Dict[str, Any]:
    """Same structure, postal object re-stringified."""
    payload = copy.deepcopy(dict(base))
    payload["objetosPostais"] = [stringify_postal_object(_postal_object_of(base))]
    return payload


def build_variant_b(base: Mapping[str, Any]) -> Dict[str, Any]:
    """Postal object as a single ``objetoPostal`` field instead of an array."""
    payload = copy.deepcopy(dict(base))
    payload.pop("objetosPostais", None)
    payload["objetoPostal"] = stringify_postal_object(_postal_object_of(base))
    return payload


def build_variant_c(base: Mapping[str, Any]) -> Dict[str, Any]:
    """Legacy layout: postal object fields flattened onto the root."""
    payload = copy.deepcopy(dict(base))
    payload.pop("objetosPostais", None)
    payload.pop("objetoPostal", None)
    for key, value in stringify_postal_object(_postal_object_of(base)).items():
        if key in payload:
            continue
        payload[key] = value
    return payload


RETRY_VARIANTS = (
    ("A", build_variant_a),
    ("B", build_variant_b),
    ("C", build_variant_c),
)
