from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class Dimension(str, Enum):
    ECONOMIC = "economic"
    HOUSING = "housing"
    HEALTH = "health"
    EDUCATION = "education"
    SOCIAL = "social"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AssessmentSource(str, Enum):
    REMOTE = "REMOTE"
    LOCAL = "LOCAL"
    LOCAL_FALLBACK = "LOCAL_FALLBACK"


WEIGHT_TOLERANCE = 0.01


class WeightingProfile(BaseModel):
    """Per-dimension weights, expressed as percentages summing to 100."""
    model_config = ConfigDict(frozen=True)

    weights: Dict[Dimension, float]
    name: str = "default"

    @field_validator("weights")
    @classmethod
    def _check_weights(cls, weights: Dict[Dimension, float]) -> Dict[Dimension, float]:
        missing = set(Dimension) - set(weights)
        if missing:
            names = ", ".join(sorted(d.value for d in missing))
            raise ValueError(f"Weighting profile is missing dimensions: {names}")
        if any(w < 0 for w in weights.values()):
            raise ValueError("Weights must be non-negative")
        total = sum(weights.values())
        if abs(total - 100.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Weights must sum to 100, got {total}")
        return weights

    @classmethod
    def from_remote(cls, data: dict) -> "WeightingProfile":
        """
        Build a profile from the backend payload.
        Accepts ``{"weights": {...}}`` or a bare mapping, and fractional weights (0.30)
        as well as percentages (30).
        """
        raw = data.get("weights", data) if isinstance(data, dict) else data
        if not isinstance(raw, dict):
            raise ValueError("Weighting profile payload must be a mapping")
        weights = {
            Dimension(k): float(v) for k, v in raw.items() if k in Dimension._value2member_map_
        }
        total = sum(weights.values())
        if weights and abs(total - 1.0) <= WEIGHT_TOLERANCE / 100:
            weights = {k: v * 100.0 for k, v in weights.items()}
        name = data.get("name", "remote") if isinstance(data, dict) else "remote"
        return cls(weights=weights, name=str(name))

    def to_dict(self) -> dict:
        return {"name": self.name, "weights": {d.value: w for d, w in self.weights.items()}}


class VulnerabilityAssessment(BaseModel):
    """Scoring output for one person/household pair."""
    model_config = ConfigDict(populate_by_name=True)

    person_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("person_id", "person"))
    score: float = Field(ge=0, le=100, validation_alias=AliasChoices("score", "vulnerability_score"))
    risk_level: RiskLevel = Field(validation_alias=AliasChoices("risk_level", "level"))
    dimension_scores: Dict[Dimension, float] = Field(
        default_factory=dict, validation_alias=AliasChoices("dimension_scores", "dimensions")
    )
    factors: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("factors", "vulnerability_factors")
    )
    recommendations: List[str] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)
    source: AssessmentSource = AssessmentSource.REMOTE

    @field_validator("person_id", mode="before")
    @classmethod
    def _coerce_person_id(cls, value):
        return str(value) if value is not None else None

    @field_validator("risk_level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_dimension_range(self):
        for dim, value in self.dimension_scores.items():
            if not 0 <= value <= 100:
                raise ValueError(f"Dimension score {dim.value}={value} outside [0, 100]")
        return self
