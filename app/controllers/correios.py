from flask import Blueprint, jsonify, request

from app import csrf
from app.utils.logging_utils import log_erro_execucao
from services.correios_labels import handle_action, record_failure

bp_correios = Blueprint('correios', __name__, url_prefix='/api')
csrf.exempt(bp_correios)


@bp_correios.post('/correios')
def correios_api():
    """Single entry point for the Correios actions.

    Always answers 200; callers check ``success`` in the body.
    """
    params = request.get_json(silent=True) or {}
    action = params.pop('action', None)
    try:
        result = handle_action(action, params)
    except Exception as exc:  # noqa: BLE001 - the UI only reads the body
        log_erro_execucao(action or 'desconhecida', params.get('organization_id'), exc)
        record_failure(params.get('organization_id'), action, exc)
        result = {'success': False, 'error': 'Erro interno ao processar a solicitação dos Correios'}
    return jsonify(result), 200
