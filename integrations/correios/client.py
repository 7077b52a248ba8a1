import logging
import time
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urljoin

import requests

from config import Config
from integrations.correios.errors import CorreiosAPIError, CorreiosAuthError, parse_error_body
from integrations.correios.payload import RETRY_VARIANTS

logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = "/token/v1/autentica/cartaopostagem"
PREPOSTAGEM_ENDPOINT = "/prepostagem/v1/prepostagens"
LABEL_ENDPOINT = "/prepostagem/v1/prepostagens/{id}/rotulo"
DECLARATION_ENDPOINTS = (
    "/prepostagem/v1/prepostagens/{id}/declaracaoConteudo",
    "/prepostagem/v1/prepostagens/declaracaoconteudo/{id}",
)
PRICE_BATCH_ENDPOINT = "/preco/v1/nacional"
PRICE_ENDPOINT = "/preco/v1/nacional/{code}"
DEADLINE_ENDPOINT = "/prazo/v1/nacional/{code}"

# Fragments of 400 bodies that mean "payload shape rejected"
RETRYABLE_SIGNATURES = (
    "formato do objeto",
    "codigoformatoobjeto",
    "peso não informado",
    "peso nao informado",
    "ppn-295",
)

ENVIRONMENTS = {
    "HOMOLOGACAO": "HOMOLOGACAO",
    "STAGING": "HOMOLOGACAO",
    "PRODUCAO": "PRODUCAO",
    "PRODUCTION": "PRODUCAO",
}


def normalize_environment(ambiente: Optional[str]) -> str:
    return ENVIRONMENTS.get((ambiente or "").strip().upper(), "HOMOLOGACAO")


def base_url_for(ambiente: Optional[str]) -> str:
    if normalize_environment(ambiente) == "PRODUCAO":
        return Config.CORREIOS_API_URL_PRODUCAO
    return Config.CORREIOS_API_URL_HOMOLOGACAO


def is_retryable_rejection(status_code: Optional[int], body: Optional[str]) -> bool:
    if status_code != 400 or not body:
        return False
    lowered = body.lower()
    return any(signature in lowered for signature in RETRYABLE_SIGNATURES)


def _json(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _parse_money(value: Any) -> float:
    try:
        return float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        return 0.0


class CorreiosClient:
    """HTTP client for the Correios CWS API (token, pre-postagem, preço, prazo)."""

    def __init__(
        self,
        base_url: str,
        id_correios: str,
        access_code: str,
        postage_card: str,
        *,
        timeout: Optional[int] = None,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.id_correios = id_correios
        self.postage_card = postage_card
        self.timeout = timeout or Config.CORREIOS_TIMEOUT
        self.session = requests.Session()
        self.session.auth = (id_correios or "", access_code or "")
        self.token: Optional[str] = None

    # ------------------------------------------------------------------
    # internal helpers
    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        url = urljoin(self.base_url + '/', endpoint.lstrip('/'))
        start = time.time()
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise CorreiosAPIError(
                f"Tempo esgotado ao chamar os Correios ({endpoint})",
                endpoint=endpoint,
                attempted_payload=kwargs.get("json"),
            ) from exc
        except requests.RequestException as exc:
            raise CorreiosAPIError(
                f"Erro de conexão com os Correios ({endpoint}): {exc}",
                endpoint=endpoint,
                attempted_payload=kwargs.get("json"),
            ) from exc
        logger.info(
            "correios_request",
            extra={
                "endpoint": endpoint,
                "status": resp.status_code,
                "latency": time.time() - start,
            },
        )
        return resp

    def _auth_headers(self, accept: str = "application/json") -> Dict[str, str]:
        if not self.token:
            self.authenticate()
        return {"Authorization": f"Bearer {self.token}", "Accept": accept}

    @staticmethod
    def _error_from(
        resp: requests.Response,
        endpoint: str,
        prefix: str,
        payload: Optional[Dict[str, Any]] = None,
        error_cls=CorreiosAPIError,
    ) -> CorreiosAPIError:
        body = resp.text or ""
        parsed = parse_error_body(body)
        message = parsed["message"] or f"HTTP {resp.status_code}"
        return error_cls(
            f"{prefix}: {resp.status_code} - {message}",
            status_code=resp.status_code,
            endpoint=endpoint,
            raw_body=body,
            code=parsed["code"],
            cause=parsed["cause"],
            attempted_payload=payload,
        )

    # ------------------------------------------------------------------
    # public API
    def authenticate(self) -> str:
        """Exchange account id + access code for a bearer token."""
        resp = self._request(
            "POST",
            TOKEN_ENDPOINT,
            json={"numero": self.postage_card},
            headers={"Accept": "application/json"},
        )
        if not resp.ok:
            raise self._error_from(
                resp, TOKEN_ENDPOINT, "Falha na autenticação com Correios", error_cls=CorreiosAuthError
            )
        token = (_json(resp) or {}).get("token")
        if not token:
            raise CorreiosAuthError(
                "Falha na autenticação com Correios: resposta sem token",
                status_code=resp.status_code,
                endpoint=TOKEN_ENDPOINT,
                raw_body=resp.text,
            )
        self.token = token
        # the Basic credentials are only for the token endpoint
        self.session.auth = None
        return token

    def _post_prepostagem(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("Enviando pré-postagem: %s", payload)
        resp = self._request("POST", PREPOSTAGEM_ENDPOINT, json=payload, headers=self._auth_headers())
        if not resp.ok:
            raise self._error_from(resp, PREPOSTAGEM_ENDPOINT, "Falha ao criar pré-postagem", payload)
        return _json(resp) or {}

    def create_prepostagem(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a pre-postagem, walking the structural variants on shape errors.

        Only a 400 whose body matches a known signature triggers the variants
        A, B and C, in that order; the first success wins. When every variant
        fails the last variant's error is raised.
        """
        try:
            return self._post_prepostagem(payload)
        except CorreiosAPIError as exc:
            if not is_retryable_rejection(exc.status_code, exc.raw_body):
                raise
            logger.warning("Pré-postagem rejeitada por formato, tentando variantes: %s", exc)
            last_error = exc

        for name, build in RETRY_VARIANTS:
            variant = build(payload)
            try:
                result = self._post_prepostagem(variant)
            except CorreiosAPIError as exc:
                logger.warning("Variante %s da pré-postagem falhou: %s", name, exc)
                last_error = exc
                continue
            logger.info("Pré-postagem aceita com a variante %s", name)
            return result
        raise last_error

    def get_label(self, prepostagem_id: str) -> bytes:
        endpoint = LABEL_ENDPOINT.format(id=prepostagem_id)
        resp = self._request("GET", endpoint, headers=self._auth_headers("application/pdf"))
        if not resp.ok:
            raise self._error_from(resp, endpoint, "Falha ao obter etiqueta")
        return resp.content

    def get_content_declaration(self, prepostagem_id: str) -> Optional[bytes]:
        """Fetch the content declaration PDF; ``None`` when every path fails."""
        for template in DECLARATION_ENDPOINTS:
            endpoint = template.format(id=prepostagem_id)
            try:
                resp = self._request("GET", endpoint, headers=self._auth_headers("application/pdf"))
            except CorreiosAPIError as exc:
                logger.warning("Declaração de conteúdo indisponível em %s: %s", endpoint, exc)
                continue
            if resp.ok and resp.content:
                return resp.content
            logger.warning(
                "Declaração de conteúdo indisponível em %s: HTTP %s", endpoint, resp.status_code
            )
        return None

    def get_delivery_days(self, service_code: str, origin_cep: str, destination_cep: str) -> int:
        endpoint = DEADLINE_ENDPOINT.format(code=service_code)
        try:
            resp = self._request(
                "GET",
                endpoint,
                params={"cepOrigem": origin_cep, "cepDestino": destination_cep},
                headers=self._auth_headers(),
            )
        except CorreiosAPIError as exc:
            logger.warning("Prazo indisponível para %s: %s", service_code, exc)
            return 0
        if not resp.ok:
            return 0
        data = _json(resp) or {}
        return int(data.get("prazoEntrega") or data.get("prazo") or 0)

    def get_prices(self, service_codes: Iterable[str], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Quote ``service_codes`` for one package.

        ``params`` carries ``cepOrigem``, ``cepDestino``, ``psObjeto``,
        ``comprimento``, ``largura`` and ``altura``. Returns one entry per code
        with ``service_code``, ``price`` and, when the API reports one,
        ``error`` or ``delivery_days``. Falls back to one GET per service when
        the batch call is rejected.
        """
        codes = list(service_codes)
        body = {
            "idLote": "1",
            "parametrosProduto": [
                {"coProduto": code, "nuRequisicao": str(idx + 1), "tpObjeto": "2", **params}
                for idx, code in enumerate(codes)
            ],
        }
        resp = self._request("POST", PRICE_BATCH_ENDPOINT, json=body, headers=self._auth_headers())
        if resp.ok:
            results = []
            for item in _json(resp) or []:
                entry = {"service_code": item.get("coProduto")}
                if item.get("txErro"):
                    entry["error"] = item["txErro"]
                    entry["price"] = 0.0
                else:
                    entry["price"] = _parse_money(item.get("pcFinal") or item.get("pcBase") or 0)
                    entry["delivery_days"] = int(item.get("prazoEntrega") or 0)
                results.append(entry)
            return results

        logger.warning("Cotação em lote rejeitada (HTTP %s), consultando serviço a serviço", resp.status_code)
        results = []
        for code in codes:
            endpoint = PRICE_ENDPOINT.format(code=code)
            try:
                single = self._request(
                    "GET", endpoint, params={"tpObjeto": "2", **params}, headers=self._auth_headers()
                )
            except CorreiosAPIError as exc:
                logger.warning("Cotação falhou para %s: %s", code, exc)
                results.append({"service_code": code, "price": 0.0, "error": "Erro ao consultar"})
                continue
            if not single.ok:
                results.append(
                    {"service_code": code, "price": 0.0, "error": "Serviço indisponível para este destino"}
                )
                continue
            data = _json(single) or {}
            results.append(
                {
                    "service_code": code,
                    "price": _parse_money(data.get("pcFinal") or data.get("pcBase") or 0),
                    "delivery_days": int(data.get("prazoEntrega") or 0),
                    "delivery_date": data.get("dataMaxima"),
                }
            )
        return results
