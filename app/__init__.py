"""Flask application factory and common utilities."""

import os
import logging
import secrets

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect
from dotenv import load_dotenv

load_dotenv()

# lido depois do .env: Config resolve as variáveis na importação
from config import Config  # noqa: E402

app = Flask(__name__)

logger = logging.getLogger(__name__)

database_url = os.getenv('DATABASE_URL')
db_user = os.getenv('DB_USER')
db_password = os.getenv('DB_PASSWORD')
db_host = os.getenv('DB_HOST')
db_name = os.getenv('DB_NAME')

missing_db_vars = [
    name for name, value in (
        ('DB_USER', db_user),
        ('DB_PASSWORD', db_password),
        ('DB_HOST', db_host),
        ('DB_NAME', db_name),
    )
    if value is None
]

if database_url:
    app.config['SQLALCHEMY_DATABASE_URI'] = database_url
elif missing_db_vars:
    logger.warning(
        "Variáveis de banco ausentes (%s); usando SQLite local em modo de fallback.",
        ", ".join(missing_db_vars),
    )
    os.makedirs(app.instance_path, exist_ok=True)
    fallback_db = os.path.join(app.instance_path, 'app.db')
    app.config['SQLALCHEMY_DATABASE_URI'] = f"sqlite:///{fallback_db}"
else:
    if db_password == "":
        logger.warning("DB_PASSWORD está vazio; conectando ao MySQL sem senha (apenas recomendado para desenvolvimento local).")
    app.config['SQLALCHEMY_DATABASE_URI'] = f"mysql+pymysql://{db_user}:{db_password}@{db_host}/{db_name}"

secret_key = os.getenv("SECRET_KEY")
if not secret_key:
    secret_key = secrets.token_urlsafe(32)
    logger.warning("SECRET_KEY não definida; gerando valor temporário apenas para ambiente local.")
app.config['SECRET_KEY'] = secret_key
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
if not app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {})
    app.config['SQLALCHEMY_ENGINE_OPTIONS'].setdefault('pool_pre_ping', True)
    app.config['SQLALCHEMY_ENGINE_OPTIONS'].setdefault('pool_recycle', 1800)
    app.config['SQLALCHEMY_ENGINE_OPTIONS'].setdefault('pool_size', 10)
    app.config['SQLALCHEMY_ENGINE_OPTIONS'].setdefault('pool_timeout', 30)

csrf = CSRFProtect(app)
db = SQLAlchemy(app)

Config.validate()

# Importa rotas e modelos depois da criação do db
from app.models import tables  # noqa: E402,F401
from app.controllers import correios, health  # noqa: E402,F401

app.register_blueprint(correios.bp_correios)

with app.app_context():
    db.create_all()
