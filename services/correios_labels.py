from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.models.tables import (
    CarrierTrackingHistory,
    CorreiosConfig,
    CorreiosErrorLog,
    CorreiosLabel,
    Sale,
)
from app.services.storage import LocalBlobStorage
from app.utils.encryption import get_codec
from app.utils.logging_utils import log_integracao_externa
from integrations.correios import catalog
from integrations.correios.client import (
    PREPOSTAGEM_ENDPOINT,
    CorreiosClient,
    base_url_for,
    normalize_environment,
)
from integrations.correios.dimensions import PackageDims, validate_dimensions
from integrations.correios.errors import CorreiosAPIError, CorreiosConfigError, CorreiosError
from integrations.correios.payload import LabelRequest, assemble_payload, only_digits

logger = logging.getLogger(__name__)

LABELS_PREFIX = "correios-labels"
WAITING_POST = "waiting_post"
_INT_FIELDS = ("default_weight_grams", "default_height_cm", "default_width_cm", "default_length_cm")


def load_config(organization_id: Optional[str], *, require_active: bool = True) -> CorreiosConfig:
    if not organization_id:
        raise CorreiosConfigError("organization_id é obrigatório")
    config = CorreiosConfig.query.filter_by(organization_id=str(organization_id)).first()
    if not config:
        raise CorreiosConfigError(
            "Configuração de Correios não encontrada. Configure suas credenciais primeiro."
        )
    if require_active and not config.is_active:
        raise CorreiosConfigError("Integração com Correios está desativada.")
    return config


def _client(config: CorreiosConfig) -> CorreiosClient:
    return CorreiosClient(
        base_url_for(config.ambiente),
        config.id_correios,
        get_codec().reveal(config.codigo_acesso_encrypted),
        config.cartao_postagem,
    )


def record_failure(
    organization_id: Optional[str],
    action: str,
    error: Exception,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Persist one ``correios_error_logs`` row for a failed action."""
    entry = CorreiosErrorLog(
        organization_id=str(organization_id) if organization_id else None,
        action=action,
        error_message=str(error),
        payload_sent=payload,
    )
    if isinstance(error, CorreiosAPIError):
        entry.endpoint = error.endpoint
        entry.http_status = error.status_code
        entry.response_body = error.raw_body
        if payload is None:
            entry.payload_sent = error.attempted_payload
    try:
        db.session.rollback()
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Falha ao registrar erro dos Correios: %s", exc)


# ----------------------------------------------------------------------
# actions

def get_services() -> Dict[str, Any]:
    return {"success": True, "services": catalog.SERVICES}


def test_connection(organization_id: Optional[str]) -> Dict[str, Any]:
    config = load_config(organization_id, require_active=False)
    _client(config).authenticate()
    log_integracao_externa("correios.autenticacao", None, "ok", organization_id)
    return {"success": True, "message": "Conexão com Correios estabelecida com sucesso!"}


def save_config(organization_id: Optional[str], data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Create or update the organization's config (upsert on ``organization_id``).

    A plain ``codigo_acesso`` is obfuscated before storage and never kept.
    """
    if not organization_id:
        raise CorreiosConfigError("organization_id é obrigatório")
    data = dict(data or {})
    config = CorreiosConfig.query.filter_by(organization_id=str(organization_id)).first()
    if config is None:
        config = CorreiosConfig(organization_id=str(organization_id))

    for field in CorreiosConfig.EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in _INT_FIELDS:
            value = int(value) if value not in (None, "") else None
        elif field == 'ambiente':
            value = normalize_environment(value)
        elif field == 'default_package_type':
            value = (value or 'caixa').strip().lower()
        elif field == 'is_active':
            value = bool(value)
        setattr(config, field, value)

    codigo = data.pop('codigo_acesso', None)
    if codigo:
        config.codigo_acesso_encrypted = get_codec().obfuscate(codigo)
    elif data.get('codigo_acesso_encrypted'):
        config.codigo_acesso_encrypted = data['codigo_acesso_encrypted']

    if not config.id_correios or not config.cartao_postagem:
        raise CorreiosConfigError("id_correios e cartao_postagem são obrigatórios")
    if not config.codigo_acesso_encrypted:
        raise CorreiosConfigError("codigo_acesso é obrigatório")

    db.session.add(config)
    db.session.commit()
    logger.info("Configuração dos Correios salva | organizacao=%s", organization_id)
    return {"success": True, "config": config.to_dict()}


def _shipping_cost_cents(prepostagem: Dict[str, Any]) -> Optional[int]:
    for key in ("valorServico", "valorTotal"):
        value = prepostagem.get(key)
        if value in (None, ""):
            continue
        try:
            return round(float(str(value).replace(",", ".")) * 100)
        except ValueError:
            logger.warning("Valor de frete inválido na resposta dos Correios: %s=%r", key, value)
    return None


def generate_label(params: Dict[str, Any]) -> Dict[str, Any]:
    """Authenticate, submit the pre-postagem, fetch documents and persist the label."""
    request = LabelRequest.from_dict(params)
    config = load_config(request.organization_id)
    assembled = assemble_payload(config, request)

    client = _client(config)
    client.authenticate()
    prepostagem = client.create_prepostagem(assembled.payload)
    log_integracao_externa("correios.prepostagem", {"id": prepostagem.get("id")}, "ok", request.organization_id)

    prepostagem_id = prepostagem.get("id")
    if not prepostagem_id:
        raise CorreiosAPIError(
            "Resposta da pré-postagem sem 'id'; não é possível obter a etiqueta",
            endpoint=PREPOSTAGEM_ENDPOINT,
            raw_body=str(prepostagem),
            attempted_payload=assembled.payload,
        )
    tracking_code = prepostagem.get("codigoRastreio") or prepostagem_id
    label_pdf = client.get_label(prepostagem_id)
    declaration_pdf = None
    if not assembled.has_invoice:
        declaration_pdf = client.get_content_declaration(prepostagem_id)

    shipping_cost = _shipping_cost_cents(prepostagem)
    label = persist_label(
        request,
        config,
        assembled.service_code,
        assembled.dims,
        prepostagem,
        label_pdf,
        declaration_pdf,
        shipping_cost,
    )
    return {
        "success": True,
        "label": label.to_dict() if label else None,
        "tracking_code": tracking_code,
        "pdf_url": label.label_pdf_url if label else None,
        "declaration_url": label.declaration_pdf_url if label else None,
        "shipping_cost_cents": shipping_cost,
    }


def _store(storage: LocalBlobStorage, path: str, data: Optional[bytes]) -> Optional[str]:
    if not data:
        return None
    if not storage.upload(path, data, "application/pdf"):
        return None
    return storage.get_public_url(path)


def persist_label(
    request: LabelRequest,
    config: CorreiosConfig,
    service_code: str,
    dims: PackageDims,
    prepostagem: Dict[str, Any],
    label_pdf: bytes,
    declaration_pdf: Optional[bytes] = None,
    shipping_cost_cents: Optional[int] = None,
    storage: Optional[LocalBlobStorage] = None,
) -> Optional[CorreiosLabel]:
    """Upload the documents, insert the label and propagate the tracking code.

    Failures are logged and never raised: the carrier already issued the
    tracking code.
    """
    storage = storage or LocalBlobStorage()
    prepostagem_id = prepostagem.get("id")
    tracking_code = prepostagem.get("codigoRastreio") or prepostagem_id
    base_path = f"{LABELS_PREFIX}/{request.organization_id}/{tracking_code}"

    label_url = _store(storage, f"{base_path}.pdf", label_pdf)
    declaration_url = _store(storage, f"{base_path}-declaracao.pdf", declaration_pdf)

    recipient = request.recipient
    label = CorreiosLabel(
        organization_id=str(request.organization_id),
        sale_id=request.sale_id,
        tracking_code=tracking_code,
        service_code=service_code,
        service_name=catalog.get_service_name(service_code),
        recipient_name=recipient.name,
        recipient_cpf_cnpj=only_digits(recipient.cpf_cnpj) or None,
        recipient_street=recipient.street,
        recipient_number=recipient.number,
        recipient_complement=recipient.complement,
        recipient_neighborhood=recipient.neighborhood,
        recipient_city=recipient.city,
        recipient_state=(recipient.state or "").upper() or None,
        recipient_cep=only_digits(recipient.cep) or None,
        recipient_phone=recipient.phone,
        weight_grams=dims.weight,
        height_cm=dims.height,
        width_cm=dims.width,
        length_cm=dims.length,
        declared_value_cents=request.declared_value_cents,
        shipping_cost_cents=shipping_cost_cents,
        label_pdf_url=label_url,
        declaration_pdf_url=declaration_url,
        status="generated",
        correios_prepostagem_id=str(prepostagem_id) if prepostagem_id is not None else None,
        api_response=prepostagem,
    )
    try:
        db.session.add(label)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Falha ao gravar etiqueta %s: %s", tracking_code, exc)
        label = None

    if request.sale_id and prepostagem.get("codigoRastreio"):
        _propagate_tracking_code(request.sale_id, prepostagem["codigoRastreio"])
    return label


def _propagate_tracking_code(sale_id: str, tracking_code: str) -> None:
    try:
        sale = db.session.get(Sale, sale_id)
        if sale is None:
            logger.warning("Venda %s não encontrada para o rastreio %s", sale_id, tracking_code)
            return
        if sale.tracking_code == tracking_code:
            return
        sale.tracking_code = tracking_code
        sale.carrier_tracking_status = WAITING_POST
        db.session.add(
            CarrierTrackingHistory(
                sale_id=sale.id,
                organization_id=sale.organization_id,
                status=WAITING_POST,
                notes=f"Etiqueta gerada - Rastreio: {tracking_code}",
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Falha ao atualizar venda %s com rastreio %s: %s", sale_id, tracking_code, exc)


def get_quote(params: Dict[str, Any]) -> Dict[str, Any]:
    """Price/deadline quote for the organization's origin CEP."""
    config = load_config(params.get("organization_id"))
    origin = only_digits(config.sender_cep)
    destination = only_digits(params.get("destination_cep"))
    if len(origin) != 8:
        raise CorreiosConfigError("CEP de origem não configurado ou inválido")
    if len(destination) != 8:
        raise CorreiosConfigError("CEP de destino inválido")

    dims = validate_dimensions(
        PackageDims.from_mapping(params),
        PackageDims(
            weight=config.default_weight_grams,
            height=config.default_height_cm,
            width=config.default_width_cm,
            length=config.default_length_cm,
        ),
        None,
    )
    codes = params.get("service_codes") or catalog.DEFAULT_QUOTE_SERVICES

    client = _client(config)
    client.authenticate()
    prices = client.get_prices(
        codes,
        {
            "cepOrigem": origin,
            "cepDestino": destination,
            "psObjeto": str(dims.weight),
            "comprimento": str(dims.length),
            "largura": str(dims.width),
            "altura": str(dims.height),
        },
    )

    quotes = []
    for item in prices:
        code = item["service_code"]
        quote = {
            "service_code": code,
            "service_name": catalog.get_service_name(code),
            "price_cents": round(item.get("price", 0) * 100),
            "delivery_days": item.get("delivery_days") or 0,
        }
        if item.get("delivery_date"):
            quote["delivery_date"] = item["delivery_date"]
        if item.get("error"):
            quote["error"] = item["error"]
        elif not quote["delivery_days"]:
            quote["delivery_days"] = (
                client.get_delivery_days(code, origin, destination)
                or catalog.DEFAULT_DELIVERY_DAYS.get(code, 5)
            )
        quotes.append(quote)

    quotes.sort(key=lambda q: q["price_cents"] or 999999)
    return {"success": True, "quotes": quotes}


ACTIONS = {
    "test_connection": lambda params: test_connection(params.get("organization_id")),
    "generate_label": generate_label,
    "get_services": lambda params: get_services(),
    "save_config": lambda params: save_config(params.get("organization_id"), params.get("config")),
    "get_quote": get_quote,
}


def handle_action(action: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
    """Run ``action`` and turn any failure into a ``success: false`` body."""
    handler = ACTIONS.get(action or "")
    organization_id = params.get("organization_id")
    if handler is None:
        return {"success": False, "error": f"Ação desconhecida: {action}"}
    try:
        return handler(params)
    except CorreiosError as exc:
        logger.error("Erro Correios | acao=%s | organizacao=%s | %s", action, organization_id, exc)
        record_failure(organization_id, action, exc)
        return {"success": False, **exc.to_dict()}
    except (ValueError, TypeError) as exc:
        logger.warning("Dados inválidos | acao=%s | organizacao=%s | %s", action, organization_id, exc)
        record_failure(organization_id, action, exc)
        return {"success": False, "error": f"Dados inválidos: {exc}"}
