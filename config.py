import os
import logging

logger = logging.getLogger(__name__)

DEFAULT_ENCRYPTION_KEY = "morphews-correios-2024"


class Config:
    """Application configuration."""
    CORREIOS_ENCRYPTION_KEY = os.getenv("CORREIOS_ENCRYPTION_KEY", DEFAULT_ENCRYPTION_KEY)
    CORREIOS_API_URL_HOMOLOGACAO = os.getenv("CORREIOS_API_URL_HOMOLOGACAO", "https://apihom.correios.com.br")
    CORREIOS_API_URL_PRODUCAO = os.getenv("CORREIOS_API_URL_PRODUCAO", "https://api.correios.com.br")
    CORREIOS_TIMEOUT = int(os.getenv("CORREIOS_TIMEOUT", "30"))
    CORREIOS_UPLOAD_SUBDIR = os.getenv("CORREIOS_UPLOAD_SUBDIR", "uploads")

    @classmethod
    def validate(cls) -> None:
        if cls.CORREIOS_ENCRYPTION_KEY == DEFAULT_ENCRYPTION_KEY:
            logger.warning("CORREIOS_ENCRYPTION_KEY not set - using built-in default key")
