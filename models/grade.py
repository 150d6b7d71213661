"""
Grade axis definitions.

Grades are the 30 ordinal demand tiers D30 (highest) down to D1 (lowest).
Arrays are indexed so that index 0 is D30 and index 29 is D1.
"""

import re
from typing import Optional

from pydantic import ConfigDict

from exceptions import InvalidGradeLabelError, InvalidRangeError
from models.base import BaseSchema


GRADE_COUNT = 30
HIGHEST_GRADE_INDEX = 0   # D30
LOWEST_GRADE_INDEX = 29   # D1

GRADE_LABELS: tuple[str, ...] = tuple(
    f"D{GRADE_COUNT - i}" for i in range(GRADE_COUNT)
)

_LABEL_TO_INDEX: dict[str, int] = {
    label: index for index, label in enumerate(GRADE_LABELS)
}

_LABEL_PATTERN = re.compile(r"^D\s*(\d{1,2})$")


def grade_label_to_index(label: Optional[str]) -> int:
    """
    Map a grade label to its array index.

    "D30" → 0, "D1" → 29. Case-insensitive, surrounding whitespace ignored.

    Raises:
        InvalidGradeLabelError: If the label is not one of D30..D1
    """
    if not isinstance(label, str):
        raise InvalidGradeLabelError(label)

    match = _LABEL_PATTERN.match(label.strip().upper())
    if not match:
        raise InvalidGradeLabelError(label)

    normalized = f"D{int(match.group(1))}"
    index = _LABEL_TO_INDEX.get(normalized)
    if index is None:
        raise InvalidGradeLabelError(label)
    return index


def index_to_grade_label(index: int) -> str:
    """Inverse of grade_label_to_index."""
    if not HIGHEST_GRADE_INDEX <= index <= LOWEST_GRADE_INDEX:
        raise InvalidRangeError(
            f"Grade index {index} outside [0, {LOWEST_GRADE_INDEX}]",
            details={"index": index}
        )
    return GRADE_LABELS[index]


def zero_vector() -> list[int]:
    """Fresh all-zero allocation vector."""
    return [0] * GRADE_COUNT


class GradeRange(BaseSchema):
    """
    Inclusive grade restriction [max_index, min_index].

    max_index is the highest grade allowed (smaller index, D30 side),
    min_index the lowest (larger index, D1 side). Construction is permissive;
    call ensure_valid() before using the range in a computation.
    """

    model_config = ConfigDict(frozen=True)

    max_index: int = HIGHEST_GRADE_INDEX
    min_index: int = LOWEST_GRADE_INDEX

    @classmethod
    def full(cls) -> "GradeRange":
        return cls()

    @classmethod
    def of_labels(
        cls,
        max_grade: Optional[str] = None,
        min_grade: Optional[str] = None
    ) -> "GradeRange":
        """Build from labels; blank labels fall back to D30 / D1."""
        max_index = (
            grade_label_to_index(max_grade)
            if max_grade and max_grade.strip() else HIGHEST_GRADE_INDEX
        )
        min_index = (
            grade_label_to_index(min_grade)
            if min_grade and min_grade.strip() else LOWEST_GRADE_INDEX
        )
        return cls(max_index=max_index, min_index=min_index)

    def ensure_valid(self) -> "GradeRange":
        """
        Raises:
            InvalidRangeError: If bounds fall outside the axis or are inverted
        """
        for bound in (self.max_index, self.min_index):
            if not HIGHEST_GRADE_INDEX <= bound <= LOWEST_GRADE_INDEX:
                raise InvalidRangeError(
                    f"Grade index {bound} outside [0, {LOWEST_GRADE_INDEX}]",
                    details={"max_index": self.max_index, "min_index": self.min_index}
                )
        if self.max_index > self.min_index:
            raise InvalidRangeError(
                f"Inverted grade range: {self.max_label}..{self.min_label}",
                details={"max_index": self.max_index, "min_index": self.min_index}
            )
        return self

    def contains(self, index: int) -> bool:
        return self.max_index <= index <= self.min_index

    def indices(self) -> range:
        return range(self.max_index, self.min_index + 1)

    def intersect(self, other: "GradeRange") -> Optional["GradeRange"]:
        """Overlap of two ranges, or None when they are disjoint."""
        max_index = max(self.max_index, other.max_index)
        min_index = min(self.min_index, other.min_index)
        if max_index > min_index:
            return None
        return GradeRange(max_index=max_index, min_index=min_index)

    @property
    def width(self) -> int:
        return max(0, self.min_index - self.max_index + 1)

    @property
    def max_label(self) -> str:
        return f"D{GRADE_COUNT - self.max_index}"

    @property
    def min_label(self) -> str:
        return f"D{GRADE_COUNT - self.min_index}"

    def __str__(self) -> str:
        return f"{self.max_label}..{self.min_label}"
