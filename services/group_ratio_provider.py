"""
Group ratio providers.

A provider registered for a secondary dimension knows how regions fall into
groups for that dimension and, when the caller gave no ratios, how to derive
them.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import structlog

from models.grade import GradeRange
from models.weight_matrix import WeightMatrix

logger = structlog.get_logger(__name__)

EXTENSION_PREFIX = "档位+"


def normalize_extension_kind(extension_kind: Optional[str]) -> Optional[str]:
    """Drop the "档位+" prefix: "档位+诚信互助小组" → "诚信互助小组"."""
    if not extension_kind:
        return None
    kind = extension_kind.strip()
    if kind.startswith(EXTENSION_PREFIX):
        kind = kind[len(EXTENSION_PREFIX):].strip()
    return kind or None


@dataclass(frozen=True)
class GroupRatios:
    """Ratios per group plus the region → group assignment they apply to."""
    ratios: dict[str, Decimal]
    region_group_map: dict[str, str]


class GroupRatioProvider(Protocol):
    def supports(self, extension_kind: Optional[str]) -> bool:
        ...

    def provide(
        self,
        weight_matrix: WeightMatrix,
        grade_range: GradeRange,
        ratios: Optional[dict[str, Decimal]] = None
    ) -> GroupRatios:
        ...


class IntegrityGroupRatioProvider:
    """
    Ratios for integrity-group extensions.

    Each region is its own group and gets its share of total customers
    inside the grade range.
    """

    EXTENSION_KINDS = frozenset({"诚信互助小组", "诚信自律小组"})

    def supports(self, extension_kind: Optional[str]) -> bool:
        return normalize_extension_kind(extension_kind) in self.EXTENSION_KINDS

    def provide(
        self,
        weight_matrix: WeightMatrix,
        grade_range: GradeRange,
        ratios: Optional[dict[str, Decimal]] = None
    ) -> GroupRatios:
        group_map = {region: region for region in weight_matrix.regions}
        if ratios:
            return GroupRatios(ratios=dict(ratios), region_group_map=group_map)

        total = weight_matrix.total(grade_range)
        if total == 0:
            return GroupRatios(ratios={}, region_group_map={})

        shares = {
            row.region: Decimal(row.total(grade_range)) / Decimal(total)
            for row in weight_matrix.rows
        }
        logger.debug("integrity_group_ratios", groups=len(shares))
        return GroupRatios(ratios=shares, region_group_map=group_map)


class MarketTypeRatioProvider:
    """
    Urban / rural split for the market-type extension.

    Regions naming 城网 or 城区 are urban, regions naming 农网 or 农村 are
    rural, anything else counts as urban. Caller ratios win when they cover
    both groups; otherwise the default 4:6 split applies. A scope that only
    touches one market type gets no ratios and is allocated pooled.
    """

    EXTENSION_KIND = "市场类型"
    URBAN = "城网"
    RURAL = "农网"
    DEFAULT_RATIOS = {URBAN: Decimal("0.4"), RURAL: Decimal("0.6")}

    def supports(self, extension_kind: Optional[str]) -> bool:
        return normalize_extension_kind(extension_kind) == self.EXTENSION_KIND

    def group_of(self, region: str) -> str:
        if self.URBAN in region or "城区" in region:
            return self.URBAN
        if self.RURAL in region or "农村" in region:
            return self.RURAL
        return self.URBAN

    def provide(
        self,
        weight_matrix: WeightMatrix,
        grade_range: GradeRange,
        ratios: Optional[dict[str, Decimal]] = None
    ) -> GroupRatios:
        group_map = {region: self.group_of(region) for region in weight_matrix.regions}
        if len(set(group_map.values())) < 2:
            logger.debug("single_market_type", regions=len(group_map))
            return GroupRatios(ratios={}, region_group_map=group_map)

        if ratios and ratios.get(self.URBAN) and ratios.get(self.RURAL):
            chosen = {self.URBAN: ratios[self.URBAN], self.RURAL: ratios[self.RURAL]}
        else:
            chosen = dict(self.DEFAULT_RATIOS)
            logger.debug("default_market_type_ratios")
        return GroupRatios(ratios=chosen, region_group_map=group_map)


class GroupRatioProviderRegistry:
    """Ordered providers; the first that supports an extension wins."""

    def __init__(self, providers: Optional[list[GroupRatioProvider]] = None):
        self.providers: list[GroupRatioProvider] = (
            list(providers) if providers is not None
            else [IntegrityGroupRatioProvider(), MarketTypeRatioProvider()]
        )

    def find(self, extension_kind: Optional[str]) -> Optional[GroupRatioProvider]:
        for provider in self.providers:
            if provider.supports(extension_kind):
                return provider
        return None
