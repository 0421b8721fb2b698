import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .db import Base


def utcnow():
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Role(str, enum.Enum):
    RECIPE_DEVELOPER = "RecipeDeveloper"
    NUTRITIONIST = "Nutritionist"


class VerificationStatus(str, enum.Enum):
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    NEEDS_REVISION = "needs_revision"


class MediaType(str, enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class NutritionDataSource(str, enum.Enum):
    ESTIMATED_API = "estimated_api"
    VERIFIED_NUTRITIONIST = "verified_nutritionist"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=True)
    role = Column(
        Enum(Role, name="role_name", values_callable=_enum_values),
        nullable=False,
        default=Role.RECIPE_DEVELOPER,
    )
    bio = Column(Text, nullable=True)
    profile_picture = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    recipes = relationship(
        "Recipe", back_populates="author", foreign_keys="Recipe.author_id"
    )
    sessions = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<User(username='{self.username}', role='{self.role}')>"


class UserSession(Base):
    __tablename__ = "user_sessions"

    token = Column(String(128), primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="sessions")


class Recipe(Base):
    __tablename__ = "recipes"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    cooking_time_minutes = Column(Integer, nullable=True)
    servings = Column(Integer, nullable=True)
    status = Column(
        Enum(
            VerificationStatus,
            name="verification_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=VerificationStatus.PENDING_VERIFICATION,
        index=True,
    )
    # Holds nutritionist guidance and revision feedback alike
    health_tips = Column(Text, nullable=True)
    author_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    verified_by_id = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    author = relationship(
        "User", back_populates="recipes", foreign_keys=[author_id]
    )
    verified_by = relationship("User", foreign_keys=[verified_by_id])
    ingredients = relationship(
        "RecipeIngredient",
        back_populates="recipe",
        cascade="all, delete-orphan",
    )
    steps = relationship(
        "PreparationStep",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="PreparationStep.step_number",
    )
    media = relationship(
        "Media",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="Media.id",
    )
    tags = relationship(
        "RecipeTag",
        back_populates="recipe",
        cascade="all, delete-orphan",
    )
    nutritional_info = relationship(
        "NutritionalInformation",
        back_populates="recipe",
        uselist=False,
        cascade="all, delete-orphan",
    )
    reviews = relationship(
        "Review",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="Review.created_at.desc()",
    )

    def __repr__(self):
        return f"<Recipe(id={self.id}, title='{self.title}', status='{self.status}')>"


class Ingredient(Base):
    __tablename__ = "ingredients"

    id = Column(Integer, primary_key=True, index=True)
    # Normalized key: trimmed, single-spaced, lower-cased
    name = Column(String(200), unique=True, nullable=False)


class MeasurementUnit(Base):
    __tablename__ = "measurement_units"

    id = Column(Integer, primary_key=True, index=True)
    unit_name = Column(String(50), unique=True, nullable=False)
    abbreviation = Column(String(20), nullable=True)


class RecipeIngredient(Base):
    __tablename__ = "recipe_ingredients"

    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True
    )
    ingredient_id = Column(
        Integer, ForeignKey("ingredients.id"), primary_key=True
    )
    unit_id = Column(
        Integer, ForeignKey("measurement_units.id"), nullable=False
    )
    quantity = Column(Numeric(10, 3), nullable=False)
    notes = Column(Text, nullable=True)

    recipe = relationship("Recipe", back_populates="ingredients")
    ingredient = relationship("Ingredient")
    unit = relationship("MeasurementUnit")


class PreparationStep(Base):
    __tablename__ = "preparation_steps"
    __table_args__ = (UniqueConstraint("recipe_id", "step_number"),)

    id = Column(Integer, primary_key=True, index=True)
    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    step_number = Column(Integer, nullable=False)
    instruction = Column(Text, nullable=False)

    recipe = relationship("Recipe", back_populates="steps")


class Media(Base):
    __tablename__ = "media"

    id = Column(Integer, primary_key=True, index=True)
    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    media_type = Column(
        Enum(MediaType, name="media_type", values_callable=_enum_values),
        nullable=False,
    )
    url = Column(String(1000), nullable=False)
    caption = Column(String(500), nullable=True)

    recipe = relationship("Recipe", back_populates="media")


class TagType(Base):
    __tablename__ = "tag_types"

    id = Column(Integer, primary_key=True, index=True)
    type_name = Column(String(50), unique=True, nullable=False)

    tags = relationship("Tag", back_populates="tag_type", order_by="Tag.tag_name")


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("tag_type_id", "tag_name"),)

    id = Column(Integer, primary_key=True, index=True)
    tag_name = Column(String(50), nullable=False)
    tag_type_id = Column(Integer, ForeignKey("tag_types.id"), nullable=False)

    tag_type = relationship("TagType", back_populates="tags")


class RecipeTag(Base):
    __tablename__ = "recipe_tags"

    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id = Column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )

    recipe = relationship("Recipe", back_populates="tags")
    tag = relationship("Tag")


class NutritionalInformation(Base):
    __tablename__ = "nutritional_information"

    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), primary_key=True
    )
    calories = Column(Numeric(10, 2), nullable=True)
    protein_grams = Column(Numeric(10, 2), nullable=True)
    carbohydrates_grams = Column(Numeric(10, 2), nullable=True)
    fat_grams = Column(Numeric(10, 2), nullable=True)
    fiber_grams = Column(Numeric(10, 2), nullable=True)
    sugar_grams = Column(Numeric(10, 2), nullable=True)
    sodium_mg = Column(Numeric(10, 2), nullable=True)
    data_source = Column(
        Enum(
            NutritionDataSource,
            name="nutrition_data_source",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=NutritionDataSource.VERIFIED_NUTRITIONIST,
    )

    recipe = relationship("Recipe", back_populates="nutritional_info")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("recipe_id", "user_id"),)

    id = Column(Integer, primary_key=True, index=True)
    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    recipe = relationship("Recipe", back_populates="reviews")
    user = relationship("User")
