"""Local blob storage for generated documents.

Files are written under ``app/static/<CORREIOS_UPLOAD_SUBDIR>`` and served as
static files, the same way editor uploads are stored.
"""

import logging
import os

from flask import current_app, has_request_context, url_for

from config import Config

logger = logging.getLogger(__name__)


class LocalBlobStorage:
    """``upload(path, data, content_type)`` / ``get_public_url(path)`` over the static folder."""

    def __init__(self, subdir: str | None = None) -> None:
        self.subdir = (subdir or Config.CORREIOS_UPLOAD_SUBDIR).strip('/')

    def _absolute(self, path: str) -> str:
        root = os.path.join(current_app.root_path, "static", self.subdir)
        target = os.path.normpath(os.path.join(root, path))
        if not target.startswith(os.path.normpath(root) + os.sep):
            raise ValueError(f"Caminho inválido para upload: {path}")
        return target

    def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> bool:
        """Write ``data`` to ``path`` (overwriting). Returns ``False`` on failure."""
        try:
            target = self._absolute(path)
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "wb") as fh:
                fh.write(data)
        except (OSError, ValueError) as exc:
            logger.error("Falha ao salvar arquivo %s (%s): %s", path, content_type, exc)
            return False
        logger.info("Arquivo salvo | path=%s | bytes=%s | tipo=%s", path, len(data), content_type)
        return True

    def get_public_url(self, path: str) -> str:
        filename = f"{self.subdir}/{path}"
        if not has_request_context():
            # no host to build an absolute URL from (background jobs, shell)
            return f"{current_app.static_url_path}/{filename}"
        return url_for("static", filename=filename, _external=True)
