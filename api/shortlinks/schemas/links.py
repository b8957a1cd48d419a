from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_TEST_VARIANTS = 4
MIN_TEST_VARIANTS = 2


class ABTestVariant(BaseModel):
    url: str = Field(min_length=1)
    percentage: float = Field(ge=0, le=100)


class LinkTestsPatchRequest(BaseModel):
    test_variants: list[ABTestVariant] | None = None
    test_completed_at: datetime | None = None

    @field_validator("test_variants")
    @classmethod
    def _check_variants(cls, value: list[ABTestVariant] | None) -> list[ABTestVariant] | None:
        if value is None:
            return None
        if not MIN_TEST_VARIANTS <= len(value) <= MAX_TEST_VARIANTS:
            raise ValueError(f"test_variants must contain between {MIN_TEST_VARIANTS} and {MAX_TEST_VARIANTS} entries")
        if round(sum(variant.percentage for variant in value), 6) != 100:
            raise ValueError("test variant percentages must add up to 100")
        return value

    @model_validator(mode="after")
    def _check_completion(self) -> "LinkTestsPatchRequest":
        if self.test_completed_at is not None and self.test_completed_at.tzinfo is None:
            raise ValueError("test_completed_at must include a timezone")
        return self


class LinkTestsOut(BaseModel):
    id: str
    test_variants: list[ABTestVariant] | None = None
    test_completed_at: datetime | None = None
    scheduled_message_id: str | None = None
