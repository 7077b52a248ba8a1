"""Database models used by the application."""

import json
from datetime import datetime

from sqlalchemy.types import Text, TypeDecorator

from app import db


class JsonString(TypeDecorator):
    """Store JSON as a serialized string."""
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Serialize Python objects to JSON before storing in the DB."""
        if value is not None:
            return json.dumps(value, ensure_ascii=False, default=str)
        return None

    def process_result_value(self, value, dialect):
        """Deserialize JSON strings from the DB into Python objects."""
        if value is not None:
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return None
        return None


class CorreiosConfig(db.Model):
    """Correios contract settings of one organization."""
    __tablename__ = 'correios_config'

    # Editable from the settings form; everything else is managed here.
    EDITABLE_FIELDS = (
        'id_correios',
        'contrato',
        'cartao_postagem',
        'ambiente',
        'sender_name',
        'sender_cpf_cnpj',
        'sender_street',
        'sender_number',
        'sender_complement',
        'sender_neighborhood',
        'sender_city',
        'sender_state',
        'sender_cep',
        'sender_phone',
        'sender_email',
        'default_service_code',
        'default_package_type',
        'default_weight_grams',
        'default_height_cm',
        'default_width_cm',
        'default_length_cm',
        'is_active',
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    id_correios = db.Column(db.String(100), nullable=False)
    codigo_acesso_encrypted = db.Column(db.String(512))
    contrato = db.Column(db.String(50))
    cartao_postagem = db.Column(db.String(50), nullable=False)
    ambiente = db.Column(db.String(20), nullable=False, default='HOMOLOGACAO')
    sender_name = db.Column(db.String(150))
    sender_cpf_cnpj = db.Column(db.String(20))
    sender_street = db.Column(db.String(200))
    sender_number = db.Column(db.String(20))
    sender_complement = db.Column(db.String(100))
    sender_neighborhood = db.Column(db.String(100))
    sender_city = db.Column(db.String(100))
    sender_state = db.Column(db.String(2))
    sender_cep = db.Column(db.String(10))
    sender_phone = db.Column(db.String(30))
    sender_email = db.Column(db.String(150))
    default_service_code = db.Column(db.String(10), nullable=False, default='03298')
    default_package_type = db.Column(db.String(20), nullable=False, default='caixa')
    default_weight_grams = db.Column(db.Integer, default=500)
    default_height_cm = db.Column(db.Integer, default=2)
    default_width_cm = db.Column(db.Integer, default=11)
    default_length_cm = db.Column(db.Integer, default=16)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> dict:
        """Serialize for the settings form; the access code is never exposed."""
        data = {field: getattr(self, field) for field in self.EDITABLE_FIELDS}
        data['organization_id'] = self.organization_id
        data['has_codigo_acesso'] = bool(self.codigo_acesso_encrypted)
        return data

    def __repr__(self):
        return f"<CorreiosConfig {self.organization_id}>"


class Sale(db.Model):
    """Sale row, only the columns touched by label generation."""
    __tablename__ = 'sales'
    id = db.Column(db.String(64), primary_key=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)
    tracking_code = db.Column(db.String(50))
    carrier_tracking_status = db.Column(db.String(50))

    def __repr__(self):
        return f"<Sale {self.id}>"


class CorreiosLabel(db.Model):
    """Label generated through the Correios pre-postagem API."""
    __tablename__ = 'correios_labels'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.String(64), nullable=False, index=True)
    sale_id = db.Column(db.String(64), index=True)
    tracking_code = db.Column(db.String(50), nullable=False, index=True)
    service_code = db.Column(db.String(10))
    service_name = db.Column(db.String(50))
    recipient_name = db.Column(db.String(150))
    recipient_cpf_cnpj = db.Column(db.String(20))
    recipient_street = db.Column(db.String(200))
    recipient_number = db.Column(db.String(20))
    recipient_complement = db.Column(db.String(100))
    recipient_neighborhood = db.Column(db.String(100))
    recipient_city = db.Column(db.String(100))
    recipient_state = db.Column(db.String(2))
    recipient_cep = db.Column(db.String(10))
    recipient_phone = db.Column(db.String(30))
    weight_grams = db.Column(db.Integer)
    height_cm = db.Column(db.Integer)
    width_cm = db.Column(db.Integer)
    length_cm = db.Column(db.Integer)
    declared_value_cents = db.Column(db.Integer)
    shipping_cost_cents = db.Column(db.Integer)
    label_pdf_url = db.Column(db.String(500))
    declaration_pdf_url = db.Column(db.String(500))
    status = db.Column(db.String(30), nullable=False, default='generated')
    correios_prepostagem_id = db.Column(db.String(100))
    api_response = db.Column(JsonString)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
            if column.name != 'api_response'
        } | {'created_at': self.created_at.isoformat() if self.created_at else None}

    def __repr__(self):
        return f"<CorreiosLabel {self.tracking_code}>"


class CarrierTrackingHistory(db.Model):
    """Status change of a sale shipped by carrier."""
    __tablename__ = 'carrier_tracking_history'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    sale_id = db.Column(db.String(64), nullable=False, index=True)
    organization_id = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(50), nullable=False)
    notes = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class CorreiosErrorLog(db.Model):
    """Failed Correios action, kept with the exact payload sent."""
    __tablename__ = 'correios_error_logs'
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.String(64), index=True)
    action = db.Column(db.String(50))
    endpoint = db.Column(db.String(255))
    http_status = db.Column(db.Integer)
    response_body = db.Column(db.Text)
    payload_sent = db.Column(JsonString)
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
