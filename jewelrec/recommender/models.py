"""Data model for the recommendation engine.

Records read from the three data feeds (behavior events, product catalog,
product similarity table) plus the per-request candidate accumulator.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, model_validator

ADMIN_ROLE = "admin"


class BehaviorType(str, Enum):
    """Kinds of shopper interaction recorded in the behavior log."""

    VIEW = "view"
    ADD_TO_CART = "add_to_cart"
    WISHLIST = "wishlist"
    PURCHASE = "purchase"


class RecommendationType(str, Enum):
    """Origin of a product similarity edge."""

    COLLABORATIVE = "collaborative"
    CONTENT = "content"


class BehaviorEvent(BaseModel):
    """One shopper interaction with a product.

    Attributes:
        user_id: Shopper ID, None for anonymous sessions.
        product_id: Product the shopper interacted with.
        behavior_type: One of ``BehaviorType``; unknown strings are kept
            as-is and weighted like a view.
        created_at: When the interaction happened.
    """

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = Field(default=None, description="Shopper ID or None")
    product_id: str = Field(..., description="Product ID")
    behavior_type: str = Field(..., description="Interaction kind")
    created_at: datetime = Field(..., description="Event timestamp")


class Product(BaseModel):
    """Catalog entry. Only active products are recommendation candidates."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    slug: str = ""
    category: str
    material: str
    price: Decimal = Field(..., ge=0)
    is_featured: bool = False
    is_active: bool = True
    images: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ProductSimilarityEdge(BaseModel):
    """Directed edge of the precomputed product-to-product similarity table."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    recommended_product_id: str
    score: float = Field(..., ge=0)
    recommendation_type: RecommendationType

    @model_validator(mode="after")
    def _no_self_edges(self) -> "ProductSimilarityEdge":
        if self.product_id == self.recommended_product_id:
            raise ValueError(f"Self-edge on product {self.product_id} is not allowed")
        return self


class Caller(BaseModel):
    """Identity of whoever triggers a privileged engine operation."""

    user_id: Optional[str] = None
    roles: Set[str] = Field(default_factory=set)

    @property
    def is_privileged(self) -> bool:
        return ADMIN_ROLE in self.roles


class CandidateScore:
    """Accumulated fusion score for one candidate product.

    Lives only for the duration of one recommendation request.
    """

    __slots__ = ("score", "strategies")

    def __init__(self):
        self.score = 0.0
        self.strategies: Set[str] = set()

    def add(self, strategy: str, weighted_score: float) -> None:
        self.score += weighted_score
        self.strategies.add(strategy)

    def __repr__(self) -> str:
        return f"CandidateScore(score={self.score:.4f}, strategies={sorted(self.strategies)})"
