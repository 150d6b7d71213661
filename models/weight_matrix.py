"""
Region × grade weight matrix.

Immutable snapshot of customer counts used as proportional weights.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence, Union

from exceptions import ContractViolationError
from models.grade import GRADE_COUNT, GradeRange, zero_vector


@dataclass(frozen=True)
class CustomerStatRecord:
    """
    One row from the customer statistics source.

    grade_counts is keyed by grade label ("D30".."D1"); labels are mapped to
    indices by the matrix builder, which also rejects counts that are not
    whole non-negative numbers.
    """
    region: str
    visit_cycle: Optional[str]
    grade_counts: Mapping[str, Union[int, float, Decimal, str, None]]


@dataclass(frozen=True)
class RegionWeights:
    """One region's 30 grade weights (index 0 = D30)."""
    region: str
    weights: tuple[int, ...]

    def __post_init__(self):
        if len(self.weights) != GRADE_COUNT:
            raise ContractViolationError(
                f"Region {self.region!r} has {len(self.weights)} grades, expected {GRADE_COUNT}",
                details={"region": self.region, "length": len(self.weights)}
            )
        for index, weight in enumerate(self.weights):
            if weight < 0:
                raise ContractViolationError(
                    f"Negative weight {weight} for region {self.region!r} at grade index {index}",
                    details={"region": self.region, "index": index, "weight": weight}
                )

    def total(self, grade_range: Optional[GradeRange] = None) -> int:
        grade_range = grade_range or GradeRange.full()
        return sum(self.weights[g] for g in grade_range.indices())


@dataclass(frozen=True)
class WeightMatrix:
    """
    Ordered rows of region weights.

    Row order is significant: allocation matrices are returned in the same
    order, and group ordering follows first appearance here.
    """
    rows: tuple[RegionWeights, ...] = field(default_factory=tuple)

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[tuple[str, Sequence[int]]]
    ) -> "WeightMatrix":
        """Build from (region, weights) pairs."""
        return cls(rows=tuple(
            RegionWeights(region=region, weights=tuple(int(w) for w in weights))
            for region, weights in rows
        ))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Sequence[int]]) -> "WeightMatrix":
        return cls.from_rows(data.items())

    @property
    def regions(self) -> list[str]:
        return [row.region for row in self.rows]

    @property
    def is_empty(self) -> bool:
        return len(self.rows) == 0

    def __len__(self) -> int:
        return len(self.rows)

    def row(self, region: str) -> Optional[RegionWeights]:
        for row in self.rows:
            if row.region == region:
                return row
        return None

    def pooled(self, grade_range: Optional[GradeRange] = None) -> list[int]:
        """
        Column sums over all regions, zero outside the grade range.

        Returns a fresh 30-element list.
        """
        grade_range = grade_range or GradeRange.full()
        pooled = zero_vector()
        for g in grade_range.indices():
            pooled[g] = sum(row.weights[g] for row in self.rows)
        return pooled

    def total(self, grade_range: Optional[GradeRange] = None) -> int:
        return sum(self.pooled(grade_range))

    def zero_rows(self, grade_range: Optional[GradeRange] = None) -> list[str]:
        """Regions whose weights are all zero inside the grade range."""
        return [
            row.region for row in self.rows
            if row.total(grade_range) == 0
        ]

    def subset(self, regions: Iterable[str]) -> "WeightMatrix":
        """Rows for the given regions, kept in this matrix's order."""
        wanted = set(regions)
        return WeightMatrix(rows=tuple(
            row for row in self.rows if row.region in wanted
        ))
