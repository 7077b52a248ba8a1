"""Ofuscação do código de acesso dos Correios.

Este módulo fornece uma ofuscação reversível (XOR byte a byte + base64) para o
código de acesso da conta dos Correios armazenado em ``correios_config``.

IMPORTANTE: isto NÃO é criptografia. Serve apenas para que o segredo não fique
em texto plano no banco; quem tem a chave (ou o código-fonte) consegue revertê-lo.
O formato é compatível com os valores já gravados pela integração anterior.
"""

import base64
import binascii
import logging

from config import Config

logger = logging.getLogger(__name__)


class CredentialCodec:
    """XOR/base64 codec bound to a fixed key.

    Args:
        key: Chave usada no XOR. Deve ser a mesma usada para gravar os valores.
    """

    def __init__(self, key: str) -> None:
        if not key:
            raise ValueError("Chave de ofuscação vazia")
        self._key = key.encode("utf-8")

    def _xor(self, data: bytes) -> bytes:
        key = self._key
        return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))

    def obfuscate(self, secret: str | None) -> str:
        """Ofusca ``secret`` para armazenamento.

        Examples:
            >>> codec = CredentialCodec("chave")
            >>> codec.reveal(codec.obfuscate("minha_senha"))
            'minha_senha'
        """
        if not secret:
            return ""
        return base64.b64encode(self._xor(secret.encode("utf-8"))).decode("ascii")

    def reveal(self, token: str | None) -> str:
        """Reverte :meth:`obfuscate`.

        Valores que nunca foram ofuscados (texto plano legado) são devolvidos
        sem alteração: base64 inválido ou bytes que não formam UTF-8 indicam
        que o valor não passou pelo codec.
        """
        if not token:
            return ""
        try:
            decoded = base64.b64decode(token, validate=True)
            return self._xor(decoded).decode("utf-8")
        except (binascii.Error, ValueError):
            return token


_codec = None


def get_codec() -> CredentialCodec:
    """Return the process-wide codec configured from ``Config``."""
    global _codec
    if _codec is None:
        _codec = CredentialCodec(Config.CORREIOS_ENCRYPTION_KEY)
        logger.info("Codec de credenciais dos Correios inicializado")
    return _codec
