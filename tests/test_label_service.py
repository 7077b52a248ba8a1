import os

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

import pytest

from app import app, db
from app.models.tables import (
    CarrierTrackingHistory,
    CorreiosConfig,
    CorreiosErrorLog,
    CorreiosLabel,
    Sale,
)
from app.services.storage import LocalBlobStorage
from app.utils.encryption import get_codec
from integrations.correios.client import CorreiosClient
from integrations.correios.dimensions import PackageDims
from integrations.correios.errors import CorreiosAPIError, CorreiosConfigError
from integrations.correios.payload import LabelRequest
from services import correios_labels

INVOICE_KEY = '4' * 44

CONFIG_DATA = {
    'id_correios': 'empresa123',
    'codigo_acesso': 'segredo-123',
    'cartao_postagem': '0067599079',
    'ambiente': 'production',
    'sender_name': 'Loja Teste',
    'sender_cpf_cnpj': '12345678000190',
    'sender_street': 'Rua A',
    'sender_number': '10',
    'sender_neighborhood': 'Centro',
    'sender_city': 'Porto Alegre',
    'sender_state': 'RS',
    'sender_cep': '90010-000',
    'sender_phone': '51 3222-1234',
    'default_service_code': '03298',
    'default_package_type': 'Caixa',
    'default_weight_grams': '500',
    'default_height_cm': 2,
    'default_width_cm': 11,
    'default_length_cm': 16,
    'is_active': True,
}

RECIPIENT = {
    'name': 'Maria',
    'cpf_cnpj': '123.456.789-09',
    'street': 'Av. B',
    'number': '200',
    'neighborhood': 'Bairro',
    'city': 'Canoas',
    'state': 'rs',
    'cep': '92010-000',
    'phone': '5551999998888',
}


def setup_module(module):
    with app.app_context():
        db.drop_all()
        db.create_all()


class FakeCarrier:
    """Records what the service asks of the Correios client."""

    def __init__(self, monkeypatch, *, declaration=b'%PDF-dc', submit_error=None):
        self.payloads = []
        self.declaration_calls = 0

        def authenticate(client):
            client.token = 'tok'
            return 'tok'

        def create_prepostagem(client, payload):
            self.payloads.append(payload)
            if submit_error:
                raise submit_error
            return {'id': 'PP1', 'codigoRastreio': 'AB123456789BR', 'valorServico': '25,90'}

        def get_content_declaration(client, prepostagem_id):
            self.declaration_calls += 1
            return declaration

        monkeypatch.setattr(CorreiosClient, 'authenticate', authenticate)
        monkeypatch.setattr(CorreiosClient, 'create_prepostagem', create_prepostagem)
        monkeypatch.setattr(CorreiosClient, 'get_label', lambda client, pid: b'%PDF-label')
        monkeypatch.setattr(CorreiosClient, 'get_content_declaration', get_content_declaration)


@pytest.fixture
def uploads(monkeypatch):
    stored = {}

    def upload(storage, path, data, content_type='application/octet-stream'):
        stored[path] = data
        return True

    monkeypatch.setattr(LocalBlobStorage, 'upload', upload)
    return stored


def _save_config(org, **overrides):
    data = dict(CONFIG_DATA, **overrides)
    return correios_labels.save_config(org, data)


def test_save_config_obfuscates_access_code():
    with app.app_context():
        result = _save_config('org-save')
        assert result['success'] is True
        assert 'codigo_acesso' not in result['config']
        assert result['config']['has_codigo_acesso'] is True

        config = CorreiosConfig.query.filter_by(organization_id='org-save').one()
        assert config.codigo_acesso_encrypted != 'segredo-123'
        assert get_codec().reveal(config.codigo_acesso_encrypted) == 'segredo-123'
        assert config.ambiente == 'PRODUCAO'
        assert config.default_package_type == 'caixa'
        assert config.default_weight_grams == 500

        # upsert keyed by organization; omitted secret is kept
        _save_config('org-save', codigo_acesso=None, sender_city='Canoas')
        assert CorreiosConfig.query.filter_by(organization_id='org-save').count() == 1
        config = CorreiosConfig.query.filter_by(organization_id='org-save').one()
        assert config.sender_city == 'Canoas'
        assert get_codec().reveal(config.codigo_acesso_encrypted) == 'segredo-123'


def test_load_config_errors():
    with app.app_context():
        with pytest.raises(CorreiosConfigError):
            correios_labels.load_config('org-missing')
        _save_config('org-inactive', is_active=False)
        with pytest.raises(CorreiosConfigError):
            correios_labels.load_config('org-inactive')
        assert correios_labels.load_config('org-inactive', require_active=False).organization_id == 'org-inactive'


def test_generate_label_without_invoice(monkeypatch, uploads):
    carrier = FakeCarrier(monkeypatch)
    with app.test_request_context():
        _save_config('org-label')
        db.session.add(Sale(id='sale-1', organization_id='org-label'))
        db.session.commit()

        result = correios_labels.generate_label(
            {'organization_id': 'org-label', 'sale_id': 'sale-1', 'recipient': RECIPIENT}
        )

        assert result['success'] is True
        assert result['tracking_code'] == 'AB123456789BR'
        assert result['shipping_cost_cents'] == 2590
        assert result['pdf_url'].endswith('/correios-labels/org-label/AB123456789BR.pdf')
        assert result['declaration_url'].endswith('/correios-labels/org-label/AB123456789BR-declaracao.pdf')
        assert uploads['correios-labels/org-label/AB123456789BR.pdf'] == b'%PDF-label'
        assert carrier.declaration_calls == 1

        postal = carrier.payloads[0]['objetosPostais'][0]
        assert postal['tipoObjeto'] == 'CAIXA'
        assert postal['vlrDeclarado'] == '100.00'
        assert len(postal['itensDeclaracaoConteudo']) == 1

        label = CorreiosLabel.query.filter_by(tracking_code='AB123456789BR', organization_id='org-label').one()
        assert label.sale_id == 'sale-1'
        assert label.service_name == 'PAC'
        assert label.weight_grams == 500
        assert label.recipient_cep == '92010000'
        assert label.correios_prepostagem_id == 'PP1'
        assert label.api_response['id'] == 'PP1'

        sale = db.session.get(Sale, 'sale-1')
        assert sale.tracking_code == 'AB123456789BR'
        assert sale.carrier_tracking_status == 'waiting_post'
        history = CarrierTrackingHistory.query.filter_by(sale_id='sale-1').all()
        assert len(history) == 1
        assert history[0].notes == 'Etiqueta gerada - Rastreio: AB123456789BR'


def test_generate_label_with_invoice_skips_declaration(monkeypatch, uploads):
    carrier = FakeCarrier(monkeypatch)
    with app.test_request_context():
        _save_config('org-nfe')
        result = correios_labels.generate_label({
            'organization_id': 'org-nfe',
            'recipient': RECIPIENT,
            'invoice_key': INVOICE_KEY,
            'invoice_number': '77',
        })
        assert result['success'] is True
        assert result['declaration_url'] is None
        assert carrier.declaration_calls == 0
        payload = carrier.payloads[0]
        assert payload['documentoFiscal']['chave'] == INVOICE_KEY
        assert 'itensDeclaracaoConteudo' not in payload['objetosPostais'][0]


def test_missing_declaration_keeps_label(monkeypatch, uploads):
    FakeCarrier(monkeypatch, declaration=None)
    with app.test_request_context():
        _save_config('org-nodc')
        result = correios_labels.generate_label({'organization_id': 'org-nodc', 'recipient': RECIPIENT})
        assert result['success'] is True
        assert result['declaration_url'] is None
        label = CorreiosLabel.query.filter_by(organization_id='org-nodc').one()
        assert label.declaration_pdf_url is None


def test_upload_failure_still_returns_tracking_code(monkeypatch):
    FakeCarrier(monkeypatch)
    monkeypatch.setattr(LocalBlobStorage, 'upload', lambda *a, **k: False)
    with app.test_request_context():
        _save_config('org-upload')
        result = correios_labels.generate_label({'organization_id': 'org-upload', 'recipient': RECIPIENT})
        assert result['success'] is True
        assert result['tracking_code'] == 'AB123456789BR'
        assert result['pdf_url'] is None


def test_submit_failure_is_logged_with_payload(monkeypatch, uploads):
    error = CorreiosAPIError(
        'Falha ao criar pré-postagem: 400 - PPN-347',
        status_code=400,
        endpoint='/prepostagem/v1/prepostagens',
        raw_body='{"msgs": ["PPN-347"]}',
        attempted_payload={'codigoServico': '03298'},
    )
    FakeCarrier(monkeypatch, submit_error=error)
    with app.test_request_context():
        _save_config('org-fail')
        result = correios_labels.handle_action(
            'generate_label', {'organization_id': 'org-fail', 'recipient': RECIPIENT}
        )
        assert result['success'] is False
        assert 'PPN-347' in result['error']
        assert result['status_code'] == 400

        entry = CorreiosErrorLog.query.filter_by(organization_id='org-fail').one()
        assert entry.action == 'generate_label'
        assert entry.http_status == 400
        assert entry.endpoint == '/prepostagem/v1/prepostagens'
        assert entry.response_body == '{"msgs": ["PPN-347"]}'
        assert entry.payload_sent == {'codigoServico': '03298'}
        assert CorreiosLabel.query.filter_by(organization_id='org-fail').count() == 0


def test_persist_label_outside_request_uses_relative_urls(uploads):
    with app.app_context():
        _save_config('org-bg')
        request = LabelRequest.from_dict({'organization_id': 'org-bg', 'recipient': RECIPIENT})
        label = correios_labels.persist_label(
            request,
            CorreiosConfig.query.filter_by(organization_id='org-bg').one(),
            '03298',
            PackageDims(weight=500, height=2, width=11, length=16),
            {'id': 'PP9', 'codigoRastreio': 'AB999999999BR'},
            b'%PDF-label',
            b'%PDF-dc',
        )
        assert label is not None
        assert label.label_pdf_url == '/static/uploads/correios-labels/org-bg/AB999999999BR.pdf'
        assert label.declaration_pdf_url == '/static/uploads/correios-labels/org-bg/AB999999999BR-declaracao.pdf'


def test_prepostagem_without_id_is_an_error(monkeypatch, uploads):
    FakeCarrier(monkeypatch)
    label_calls = []
    monkeypatch.setattr(
        CorreiosClient, 'create_prepostagem', lambda client, payload: {'codigoRastreio': 'AB1BR'}
    )
    monkeypatch.setattr(CorreiosClient, 'get_label', lambda client, pid: label_calls.append(pid))
    with app.test_request_context():
        _save_config('org-noid')
        result = correios_labels.handle_action(
            'generate_label', {'organization_id': 'org-noid', 'recipient': RECIPIENT}
        )
        assert result['success'] is False
        assert "sem 'id'" in result['error']
        assert label_calls == []
        entry = CorreiosErrorLog.query.filter_by(organization_id='org-noid').one()
        assert entry.payload_sent['codigoServico'] == '03298'


def test_local_storage_writes_under_static(tmp_path, monkeypatch):
    monkeypatch.setattr(app, 'root_path', str(tmp_path))
    with app.test_request_context():
        storage = LocalBlobStorage('uploads')
        assert storage.upload('correios-labels/org/AB1.pdf', b'%PDF', 'application/pdf') is True
        assert (tmp_path / 'static' / 'uploads' / 'correios-labels' / 'org' / 'AB1.pdf').read_bytes() == b'%PDF'
        assert storage.get_public_url('correios-labels/org/AB1.pdf').endswith(
            '/static/uploads/correios-labels/org/AB1.pdf'
        )
        assert storage.upload('../escape.pdf', b'x') is False


def test_get_quote_sorts_by_price(monkeypatch):
    def authenticate(client):
        client.token = 'tok'
        return 'tok'

    prices = [
        {'service_code': '03220', 'price': 42.5, 'delivery_days': 2},
        {'service_code': '03298', 'price': 21.0, 'delivery_days': 0},
    ]
    monkeypatch.setattr(CorreiosClient, 'authenticate', authenticate)
    monkeypatch.setattr(CorreiosClient, 'get_prices', lambda client, codes, params: prices)
    monkeypatch.setattr(CorreiosClient, 'get_delivery_days', lambda client, code, o, d: 0)
    with app.app_context():
        _save_config('org-quote')
        result = correios_labels.get_quote({'organization_id': 'org-quote', 'destination_cep': '01001-000'})
    assert result['success'] is True
    assert [q['service_code'] for q in result['quotes']] == ['03298', '03220']
    assert result['quotes'][0]['price_cents'] == 2100
    assert result['quotes'][0]['delivery_days'] == 7
    assert result['quotes'][1]['service_name'] == 'SEDEX'


def test_get_quote_rejects_bad_cep():
    with app.app_context():
        _save_config('org-quote-cep')
        with pytest.raises(CorreiosConfigError):
            correios_labels.get_quote({'organization_id': 'org-quote-cep', 'destination_cep': '123'})
