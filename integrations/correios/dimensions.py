"""Package dimension/weight repair against Correios service limits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

# Used when neither the request nor the tenant defaults carry a value.
FALLBACK_WEIGHT_GRAMS = 500
FALLBACK_HEIGHT_CM = 2
FALLBACK_WIDTH_CM = 11
FALLBACK_LENGTH_CM = 16


@dataclass(frozen=True)
class PackageDims:
    """Weight in grams, sides in centimetres."""

    weight: Optional[float] = None
    height: Optional[float] = None
    width: Optional[float] = None
    length: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PackageDims":
        """Build from the ``*_grams``/``*_cm`` keys used by requests and config rows."""
        data = data or {}
        return cls(
            weight=data.get("weight_grams"),
            height=data.get("height_cm"),
            width=data.get("width_cm"),
            length=data.get("length_cm"),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "weight_grams": self.weight,
            "height_cm": self.height,
            "width_cm": self.width,
            "length_cm": self.length,
        }


@dataclass(frozen=True)
class ServiceLimits:
    min_weight: int
    max_weight: int
    min_height: int
    max_height: int
    min_width: int
    max_width: int
    min_length: int
    max_length: int
    min_sum: int
    max_sum: int


DEFAULT_LIMITS = ServiceLimits(
    min_weight=1, max_weight=30000,
    min_height=2, max_height=100,
    min_width=11, max_width=100,
    min_length=16, max_length=100,
    min_sum=29, max_sum=200,
)

SERVICE_LIMITS: Dict[str, ServiceLimits] = {
    # SEDEX / PAC (contrato e varejo)
    "03220": DEFAULT_LIMITS,
    "03298": DEFAULT_LIMITS,
    "04014": DEFAULT_LIMITS,
    "04510": DEFAULT_LIMITS,
    "04162": DEFAULT_LIMITS,
    "04669": DEFAULT_LIMITS,
    # SEDEX 10 / SEDEX 12
    "04170": ServiceLimits(
        min_weight=1, max_weight=10000,
        min_height=2, max_height=100,
        min_width=11, max_width=100,
        min_length=16, max_length=100,
        min_sum=29, max_sum=200,
    ),
    "03158": ServiceLimits(
        min_weight=1, max_weight=10000,
        min_height=2, max_height=100,
        min_width=11, max_width=100,
        min_length=16, max_length=100,
        min_sum=29, max_sum=200,
    ),
    "03140": ServiceLimits(
        min_weight=1, max_weight=10000,
        min_height=2, max_height=100,
        min_width=11, max_width=100,
        min_length=16, max_length=100,
        min_sum=29, max_sum=200,
    ),
    # Mini Envios
    "04227": ServiceLimits(
        min_weight=1, max_weight=300,
        min_height=1, max_height=4,
        min_width=11, max_width=16,
        min_length=16, max_length=24,
        min_sum=29, max_sum=44,
    ),
}


def get_limits(service_code: Optional[str]) -> ServiceLimits:
    """Return the limits for ``service_code`` or the default entry."""
    return SERVICE_LIMITS.get((service_code or "").strip(), DEFAULT_LIMITS)


def _pick(requested, default, fallback):
    for value in (requested, default):
        if value:
            return value
    return fallback


def _clamp(value, low, high):
    if value < low:
        value = low
    if value > high:
        value = high
    return value


def _round(value) -> int:
    # round-half-up, the carrier rejects non-integer sides
    return int(float(value) + 0.5)


def validate_dimensions(
    requested: Optional[PackageDims],
    defaults: Optional[PackageDims],
    service_code: Optional[str],
) -> PackageDims:
    """Resolve and repair package dimensions for ``service_code``.

    Each axis takes the requested value when present and non-zero, then the
    tenant default, then a fixed fallback. Values are clamped to the service
    limits and ``length`` absorbs any shortfall to the minimum sum of sides.
    The length is not re-clamped after that adjustment.
    """
    requested = requested or PackageDims()
    defaults = defaults or PackageDims()
    limits = get_limits(service_code)

    weight = _pick(requested.weight, defaults.weight, FALLBACK_WEIGHT_GRAMS)
    height = _pick(requested.height, defaults.height, FALLBACK_HEIGHT_CM)
    width = _pick(requested.width, defaults.width, FALLBACK_WIDTH_CM)
    length = _pick(requested.length, defaults.length, FALLBACK_LENGTH_CM)

    # limits are integers, so rounding a clamped value stays in range
    weight = _round(_clamp(float(weight), limits.min_weight, limits.max_weight))
    height = _round(_clamp(float(height), limits.min_height, limits.max_height))
    width = _round(_clamp(float(width), limits.min_width, limits.max_width))
    length = _round(_clamp(float(length), limits.min_length, limits.max_length))

    if height + width + length < limits.min_sum:
        length = limits.min_sum - height - width
        if length > limits.max_length:
            logger.warning(
                "Comprimento ajustado acima do limite | servico=%s | comprimento=%s | max=%s",
                service_code,
                length,
                limits.max_length,
            )

    return PackageDims(weight=weight, height=height, width=width, length=length)
