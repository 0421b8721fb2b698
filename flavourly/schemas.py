from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import MediaType, NutritionDataSource, VerificationStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# Requests


class IngredientLineIn(CamelModel):
    name: Optional[str] = Field(
        default="", json_schema_extra={"example": "Flour"}
    )
    quantity: Optional[str] = Field(
        default="", json_schema_extra={"example": "2"}
    )
    unit: Optional[str] = Field(
        default="", json_schema_extra={"example": "cup"}
    )
    notes: Optional[str] = None

    @field_validator("quantity", mode="before")
    @classmethod
    def quantity_as_text(cls, v):
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v


class MediaIn(CamelModel):
    type: Optional[MediaType] = Field(default=None, alias="type")
    url: Optional[str] = None
    caption: Optional[str] = None


class RecipeContent(CamelModel):
    title: Optional[str] = Field(
        default="", json_schema_extra={"example": "Simple Pancakes"}
    )
    description: Optional[str] = None
    cooking_time_minutes: Optional[int] = None
    servings: Optional[int] = None
    ingredients: List[IngredientLineIn] = Field(
        default_factory=list,
        json_schema_extra={
            "example": [
                {"name": "flour", "quantity": "200", "unit": "g"},
                {"name": "egg", "quantity": "2", "unit": "piece"},
            ]
        },
    )
    steps: List[Optional[str]] = Field(
        default_factory=list,
        json_schema_extra={
            "example": [
                "Mix dry ingredients",
                "Add wet ingredients",
                "Cook on skillet until golden",
            ]
        },
    )
    # Omitted means "leave media alone"; an explicit list, even [], replaces it
    media: Optional[List[MediaIn]] = None

    @property
    def replaces_media(self) -> bool:
        return "media" in self.model_fields_set and self.media is not None


class StatusUpdate(CamelModel):
    status: str
    notes: Optional[str] = None


class NutritionalInfoIn(CamelModel):
    calories: Optional[Decimal] = None
    protein_grams: Optional[Decimal] = None
    carbohydrates_grams: Optional[Decimal] = None
    fat_grams: Optional[Decimal] = None
    fiber_grams: Optional[Decimal] = None
    sugar_grams: Optional[Decimal] = None
    sodium_mg: Optional[Decimal] = None
    data_source: Optional[NutritionDataSource] = None

    @field_validator(
        "calories",
        "protein_grams",
        "carbohydrates_grams",
        "fat_grams",
        "fiber_grams",
        "sugar_grams",
        "sodium_mg",
        mode="before",
    )
    @classmethod
    def blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class TagRef(BaseModel):
    id: int


class ContentUpdate(CamelModel):
    health_tips: Optional[str] = None
    nutritional_info: Optional[NutritionalInfoIn] = None
    tags: Optional[List[Union[int, TagRef]]] = None

    def tag_ids(self) -> List[int]:
        return [t if isinstance(t, int) else t.id for t in self.tags or []]


class ReviewIn(CamelModel):
    rating: int
    comment: Optional[str] = None


# Responses


class UserSummary(CamelModel):
    id: int
    username: str
    full_name: Optional[str] = None
    profile_picture: Optional[str] = None


class IngredientOut(CamelModel):
    id: int
    name: str


class UnitOut(CamelModel):
    id: int
    unit_name: str
    abbreviation: Optional[str] = None


class RecipeIngredientOut(CamelModel):
    ingredient: IngredientOut
    unit: UnitOut
    quantity: Decimal
    notes: Optional[str] = None


class StepOut(CamelModel):
    id: int
    step_number: int
    instruction: str


class MediaOut(CamelModel):
    id: int
    media_type: MediaType
    url: str
    caption: Optional[str] = None


class TagTypeRef(CamelModel):
    id: int
    type_name: str


class TagOut(CamelModel):
    id: int
    tag_name: str
    tag_type: TagTypeRef


class TagTypeOut(CamelModel):
    id: int
    type_name: str
    tags: List["TagBrief"] = Field(default_factory=list)


class TagBrief(CamelModel):
    id: int
    tag_name: str


class NutritionalInfoOut(CamelModel):
    calories: Optional[Decimal] = None
    protein_grams: Optional[Decimal] = None
    carbohydrates_grams: Optional[Decimal] = None
    fat_grams: Optional[Decimal] = None
    fiber_grams: Optional[Decimal] = None
    sugar_grams: Optional[Decimal] = None
    sodium_mg: Optional[Decimal] = None
    data_source: NutritionDataSource


class ReviewOut(CamelModel):
    id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    user: UserSummary


class RecipeSummary(CamelModel):
    id: int
    title: str
    description: Optional[str] = None
    cooking_time_minutes: Optional[int] = None
    servings: Optional[int] = None
    status: VerificationStatus
    author: UserSummary
    verified_at: Optional[datetime] = None
    created_at: datetime
    media: List[MediaOut] = Field(default_factory=list)


class RecipeDetail(RecipeSummary):
    health_tips: Optional[str] = None
    updated_at: datetime
    author_id: int
    verified_by_id: Optional[int] = None
    verified_by: Optional[UserSummary] = None
    nutritional_info: Optional[NutritionalInfoOut] = None
    steps: List[StepOut] = Field(default_factory=list)
    ingredients: List[RecipeIngredientOut] = Field(default_factory=list)
    tags: List[TagOut] = Field(default_factory=list)
    reviews: List[ReviewOut] = Field(default_factory=list)
    average_rating: Optional[float] = None
    review_count: int = 0


class RecipePage(BaseModel):
    items: List[RecipeSummary]
    total: int
    page: int
    page_size: int


class NutritionistStats(CamelModel):
    pending_reviews: int
    verified_recipes: int
    total_recipes: int


TagTypeOut.model_rebuild()
