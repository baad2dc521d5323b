"""
Structured search models produced from natural-language shoe questions.
"""
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

# Marker for "no constraint" on a condition field
EMPTY = "empty"


class RangeSpec(BaseModel):
    """Bounds and ordering for a numeric shoe attribute."""
    min: Optional[float] = Field(default=None, description="Inclusive lower bound in millimeters")
    max: Optional[float] = Field(default=None, description="Inclusive upper bound in millimeters")
    sort: Optional[Literal["asc", "desc"]] = Field(default=None, description="Requested ordering")

    def is_unconstrained(self) -> bool:
        return self.min is None and self.max is None and self.sort is None


RangeCondition = Union[RangeSpec, Literal["empty"]]


class ShoeSearchConditions(BaseModel):
    """
    Filters and ordering extracted from a shoe question.

    Every field is either a usable constraint or the literal "empty";
    missing values are normalised to "empty" during validation.
    """
    keywords: List[str] = Field(
        default_factory=list,
        description="Keywords to search for in shoe names, brands, etc."
    )
    stack_height_mm: RangeCondition = Field(
        default=EMPTY,
        description="Sole height; matches when either the forefoot or heel stack height is in range"
    )
    forefoot_stack_height_mm: RangeCondition = Field(default=EMPTY, description="Forefoot stack height only")
    heel_stack_height_mm: RangeCondition = Field(default=EMPTY, description="Heel stack height only")
    drop: RangeCondition = Field(
        default=EMPTY,
        description="Difference between heel and forefoot stack heights"
    )
    width: str = Field(default=EMPTY, description="Shoe width (narrow, standard, wide) or 'empty'")
    intended_use: str = Field(default=EMPTY, description="What the shoe is for (road, trail) or 'empty'")
    gender: str = Field(default=EMPTY, description="Gender the shoe is made for (men, women, unisex) or 'empty'")
    limit: Optional[int] = Field(default=None, description="Maximum number of shoes to return")

    @field_validator("keywords", mode="before")
    @classmethod
    def clean_keywords(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [str(k).strip() for k in v if str(k).strip()]

    @field_validator("stack_height_mm", "forefoot_stack_height_mm", "heel_stack_height_mm", "drop", mode="before")
    @classmethod
    def normalise_range(cls, v):
        if v is None or v == "" or v == {}:
            return EMPTY
        if isinstance(v, str) and v.strip().lower() == EMPTY:
            return EMPTY
        return v

    @field_validator("stack_height_mm", "forefoot_stack_height_mm", "heel_stack_height_mm", "drop")
    @classmethod
    def collapse_unconstrained_range(cls, v):
        if isinstance(v, RangeSpec) and v.is_unconstrained():
            return EMPTY
        return v

    @field_validator("width", "intended_use", "gender", mode="before")
    @classmethod
    def normalise_text(cls, v):
        if v is None:
            return EMPTY
        text = str(v).strip()
        if not text or text.lower() == EMPTY:
            return EMPTY
        # "women's" should match a "women" variant
        if text.lower().endswith("'s"):
            text = text[:-2]
        return text

    @field_validator("limit")
    @classmethod
    def positive_limit(cls, v):
        if v is not None and v <= 0:
            return None
        return v

    def range_for(self, name: str) -> Optional[RangeSpec]:
        """Return the range for a field, or None when it is "empty"."""
        value = getattr(self, name)
        return value if isinstance(value, RangeSpec) else None

    def text_for(self, name: str) -> Optional[str]:
        """Return the string filter for a field, or None when it is "empty"."""
        value = getattr(self, name)
        return None if value == EMPTY else value


class SearchQuery(BaseModel):
    """Search the indexed documents for a query."""
    query: str = Field(description="Search the indexed documents for a query.")
