"""Static catalog of Correios services offered to the UI."""

SERVICES = [
    {"code": "03220", "name": "SEDEX", "description": "Entrega expressa"},
    {"code": "03298", "name": "PAC", "description": "Entrega econômica"},
    {"code": "04162", "name": "SEDEX 12", "description": "Entrega até 12h"},
    {"code": "04170", "name": "SEDEX 10", "description": "Entrega até 10h"},
    {"code": "04669", "name": "PAC Mini", "description": "Para objetos pequenos"},
    {"code": "04227", "name": "Mini Envios", "description": "Objetos até 300g"},
]

# Codes only seen in price quotes
_QUOTE_ONLY_NAMES = {
    "03140": "SEDEX 12",
    "03158": "SEDEX 10",
    "04510": "PAC",
    "04014": "SEDEX",
}

# Fallback delivery estimate (days) when the deadline endpoint has no answer
DEFAULT_DELIVERY_DAYS = {
    "03220": 3,
    "03298": 7,
    "03140": 2,
    "03158": 1,
    "04227": 10,
    "04510": 7,
    "04014": 3,
}

DEFAULT_QUOTE_SERVICES = ["03220", "03298"]


def get_service_name(code: str | None) -> str:
    for service in SERVICES:
        if service["code"] == code:
            return service["name"]
    return _QUOTE_ONLY_NAMES.get(code or "", code or "")
