"""Utility functions for standardized application logging."""
from __future__ import annotations

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


def log_integracao_externa(
    service: str,
    payload: Dict[str, Any] | None,
    status: str,
    organization_id: str | None,
) -> None:
    """Log interactions with external APIs."""
    level = logging.INFO if str(status).lower() in {"sucesso", "ok", "200", "201"} else logging.ERROR
    logger.log(
        level,
        "Integracao externa | servico=%s | organizacao=%s | status=%s | payload=%s",
        service,
        organization_id,
        status,
        payload,
    )


def log_erro_execucao(action: str, organization_id: str | None, error: Exception) -> None:
    """Log runtime errors and exceptions."""
    logger.error(
        "Erro de execucao | acao=%s | organizacao=%s",
        action,
        organization_id,
        exc_info=error,
    )
