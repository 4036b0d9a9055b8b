"""
Ranking feature schema.

Every feature the ranking model consumes is declared here with the store it
comes from and whether it is required. Optional fields carry an explicit,
documented default that is applied when the field is absent; required fields
are left missing (NaN, which XGBoost treats as missing) and lower the row's
availability instead.

Sources:
    user         user store, keyed by user_id
    item         item store, keyed by item_id
    interaction  interaction store, keyed by "user_id:item_id"
    context      request context and the candidate itself
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

FEATURE_SOURCES = ("user", "item", "interaction", "context")


@dataclass(frozen=True)
class FeatureField:
    """
    One model input.

    Attributes:
        name: Column name, identical offline and online
        source: One of FEATURE_SOURCES
        required: Whether absence counts against availability
        default: Value used when an optional field is absent
    """
    name: str
    source: str
    required: bool = True
    default: Optional[float] = None

    def __post_init__(self):
        if self.source not in FEATURE_SOURCES:
            raise ValueError(f"Unknown feature source {self.source!r} for {self.name}")
        if not self.required and self.default is None:
            raise ValueError(f"Optional feature {self.name} needs an explicit default")


@dataclass
class FeatureSchema:
    """Ordered collection of feature fields."""

    fields: List[FeatureField] = field(default_factory=list)

    def __post_init__(self):
        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate feature names in schema")

    @property
    def feature_columns(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def required_fields(self) -> List[FeatureField]:
        return [f for f in self.fields if f.required]

    @property
    def optional_defaults(self) -> Dict[str, float]:
        return {f.name: f.default for f in self.fields if not f.required}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": [
                {"name": f.name, "source": f.source, "required": f.required, "default": f.default}
                for f in self.fields
            ]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureSchema":
        return cls([FeatureField(**entry) for entry in data["fields"]])


DEFAULT_SCHEMA = FeatureSchema([
    # User aggregates
    FeatureField("user_activity_count", "user"),
    FeatureField("user_avg_engagement", "user"),
    FeatureField("user_tenure_days", "user"),
    # Item aggregates
    FeatureField("item_popularity", "item"),
    FeatureField("item_avg_rating", "item"),
    FeatureField("item_age_days", "item"),
    # User x item history: no row means no recent interactions
    FeatureField("recent_interaction_count", "interaction", required=False, default=0.0),
    FeatureField("user_item_affinity", "interaction", required=False, default=0.0),
    # Request context
    FeatureField("retrieval_similarity", "context", required=False, default=0.0),
    FeatureField("surface_is_search", "context"),
])
