"""Category lookup schemas."""

from pydantic import BaseModel, Field, field_validator


class Category(BaseModel):
    """Spending category with merchant and keyword lookup tables."""

    id: str
    name: str | None = None
    merchants: list[str] = Field(
        default_factory=list, description="Lowercased merchant names"
    )
    keywords: list[str] = Field(
        default_factory=list, description="Substrings matched against the transaction name"
    )

    @field_validator("merchants", "keywords")
    @classmethod
    def normalize_terms(cls, values: list[str]) -> list[str]:
        return [value.strip().lower() for value in values if value and value.strip()]
