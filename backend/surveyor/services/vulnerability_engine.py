"""
Vulnerability scoring engine.
Five-dimension weighted score (economic, housing, health, education, social) computed
on-device from person and household records; mirrors the registry's server-side scoring.
"""
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..models.assessment import (
    AssessmentSource,
    Dimension,
    RiskLevel,
    VulnerabilityAssessment,
    WeightingProfile,
)
from ..models.records import HouseholdRecord, PersonRecord

DimensionResult = Tuple[float, List[str]]

DEFAULT_WEIGHTING_PROFILE = WeightingProfile(
    name="default",
    weights={
        Dimension.ECONOMIC: 35.0,
        Dimension.HOUSING: 30.0,
        Dimension.HEALTH: 20.0,
        Dimension.EDUCATION: 10.0,
        Dimension.SOCIAL: 5.0,
    },
)

RISK_ORDER = [RiskLevel.LOW, RiskLevel.MODERATE, RiskLevel.HIGH, RiskLevel.CRITICAL]

BASELINE_RECOMMENDATIONS: Dict[RiskLevel, List[str]] = {
    RiskLevel.CRITICAL: [
        "PRIORITY_1_IMMEDIATE_ASSISTANCE",
        "URGENT_PROGRAM_ENROLLMENT",
        "MONTHLY_FOLLOW_UP",
    ],
    RiskLevel.HIGH: [
        "PRIORITY_2_INTERVENTION",
        "IN_DEPTH_NEEDS_ASSESSMENT",
        "PROGRAM_REFERRAL",
    ],
    RiskLevel.MODERATE: [
        "PRIORITY_3_REGULAR_MONITORING",
        "PREVENTION_SERVICES",
    ],
    RiskLevel.LOW: ["STANDARD_FOLLOW_UP"],
}

# (factor, minimum risk level, recommendation code)
FACTOR_RECOMMENDATIONS: List[Tuple[str, RiskLevel, str]] = [
    ("unemployment", RiskLevel.LOW, "EMPLOYMENT_INSERTION_PROGRAM"),
    ("extreme_poverty", RiskLevel.HIGH, "CASH_TRANSFER_ENROLLMENT"),
    ("no_education", RiskLevel.LOW, "LITERACY_PROGRAM"),
    ("illiteracy", RiskLevel.LOW, "LITERACY_PROGRAM"),
    ("children_out_of_school", RiskLevel.LOW, "SCHOOLING_SUPPORT"),
    ("unpaid_school_fees", RiskLevel.MODERATE, "SCHOOL_FEE_WAIVER"),
    ("chronic_illness", RiskLevel.LOW, "PRIORITY_HEALTH_COVERAGE"),
    ("no_health_insurance", RiskLevel.MODERATE, "PRIORITY_HEALTH_COVERAGE"),
    ("malnutrition", RiskLevel.LOW, "NUTRITION_SUPPORT"),
    ("no_electricity", RiskLevel.MODERATE, "BASIC_SERVICES_ACCESS"),
    ("no_water", RiskLevel.MODERATE, "BASIC_SERVICES_ACCESS"),
    ("no_sanitation", RiskLevel.MODERATE, "BASIC_SERVICES_ACCESS"),
    ("precarious_housing", RiskLevel.HIGH, "HOUSING_IMPROVEMENT"),
    ("single_parent", RiskLevel.MODERATE, "FAMILY_SUPPORT_SERVICES"),
    ("elderly_alone", RiskLevel.LOW, "COMMUNITY_OUTREACH"),
    ("social_isolation", RiskLevel.LOW, "COMMUNITY_OUTREACH"),
]


class InvalidRecordError(ValueError):
    """Person or household record cannot be scored."""


def _matches(value: Optional[str], *keywords: str) -> bool:
    text = (value or "").lower()
    return any(k in text for k in keywords)


def _clamp(score: float) -> float:
    return max(0.0, min(100.0, score))


class VulnerabilityEngine:
    """
    Deterministic on-device scorer.

    Each dimension adds points from a fixed checklist of risk indicators and is clamped
    to [0, 100]. The global score is the weighted mean of the dimension scores under the
    active weighting profile. Intermediate values stay unrounded; rounding to two
    decimals happens once, when the assessment is built.
    """

    # Poverty lines, FCFA per person per month
    POVERTY_LINE = 150_000
    VULNERABILITY_LINE = 300_000

    THRESHOLDS = (
        (RiskLevel.CRITICAL, 80.0),
        (RiskLevel.HIGH, 60.0),
        (RiskLevel.MODERATE, 40.0),
    )

    ELDERLY_AGE = 65

    def assess(
        self,
        person: Union[PersonRecord, dict],
        household: Union[HouseholdRecord, dict],
        profile: WeightingProfile = DEFAULT_WEIGHTING_PROFILE,
        calculated_at: Optional[datetime] = None,
    ) -> VulnerabilityAssessment:
        """
        Score one person/household pair.

        Args:
            person: Person record (model or raw form dict)
            household: Household record the person belongs to
            profile: Weights used to combine the dimension scores
            calculated_at: Timestamp stamped on the result (defaults to now, UTC)

        Raises:
            InvalidRecordError: if either record fails validation
        """
        person = self.coerce(PersonRecord, person, "person")
        household = self.coerce(HouseholdRecord, household, "household")
        calculated_at = calculated_at or datetime.utcnow()

        results = self.dimension_results(person, household, calculated_at.date())
        dimension_scores = {dim: score for dim, (score, _) in results.items()}
        factors = [f for _, dim_factors in results.values() for f in dim_factors]

        score = round(self.weighted_score(dimension_scores, profile), 2)
        risk_level = self.determine_risk_level(score)

        return VulnerabilityAssessment(
            person_id=person.id,
            score=score,
            risk_level=risk_level,
            dimension_scores={dim: round(v, 2) for dim, v in dimension_scores.items()},
            factors=factors,
            recommendations=self.recommendations(risk_level, factors),
            calculated_at=calculated_at,
            source=AssessmentSource.LOCAL,
        )

    def dimension_results(
        self, person: PersonRecord, household: HouseholdRecord, today: date
    ) -> Dict[Dimension, DimensionResult]:
        return {
            Dimension.ECONOMIC: self._economic(person, household),
            Dimension.HOUSING: self._housing(household),
            Dimension.HEALTH: self._health(person, household),
            Dimension.EDUCATION: self._education(person, household),
            Dimension.SOCIAL: self._social(person, household, today),
        }

    def weighted_score(self, dimension_scores: Dict[Dimension, float], profile: WeightingProfile) -> float:
        total = sum(dimension_scores[dim] * profile.weights[dim] for dim in Dimension)
        return _clamp(total / 100.0)

    def determine_risk_level(self, score: float) -> RiskLevel:
        for level, threshold in self.THRESHOLDS:
            if score >= threshold:
                return level
        return RiskLevel.LOW

    def recommendations(self, risk_level: RiskLevel, factors: List[str]) -> List[str]:
        codes = list(BASELINE_RECOMMENDATIONS[risk_level])
        rank = RISK_ORDER.index(risk_level)
        for factor, min_level, code in FACTOR_RECOMMENDATIONS:
            if factor in factors and rank >= RISK_ORDER.index(min_level):
                codes.append(code)
        return list(dict.fromkeys(codes))

    # ------------------------------------------------------------------
    # Dimensions
    # ------------------------------------------------------------------

    def _economic(self, person: PersonRecord, household: HouseholdRecord) -> DimensionResult:
        score = 0.0
        factors = []

        per_capita = household.monthly_income / household.household_size
        if per_capita < self.POVERTY_LINE:
            score += 50
            factors.append("extreme_poverty")
        elif per_capita < self.VULNERABILITY_LINE:
            score += 30
            factors.append("economic_vulnerability")
        else:
            score += 10

        occupation = person.occupation_status
        if _matches(occupation, "chomeur", "chômeur", "unemployed"):
            score += 25
            factors.append("unemployment")
        elif _matches(occupation, "journalier", "daily"):
            score += 20
            factors.append("daily_labour")
        elif _matches(occupation, "informel", "informal"):
            score += 15
            factors.append("informal_work")
        else:
            score += 5

        if household.dependents >= 5:
            score += 20
            factors.append("multiple_dependents")
        elif household.dependents >= 3:
            score += 15
            factors.append("multiple_dependents")
        elif household.dependents >= 1:
            score += 10

        if not household.has_savings:
            score += 15
            factors.append("no_savings")

        return _clamp(score), factors

    def _housing(self, household: HouseholdRecord) -> DimensionResult:
        score = 0.0
        factors = []

        if _matches(household.housing_type, "precaire", "précaire", "precarious"):
            score += 30
            factors.append("precarious_housing")
        elif _matches(household.housing_type, "case", "traditional"):
            score += 20
        elif _matches(household.housing_type, "location", "rent"):
            score += 15
        else:
            score += 5

        if not household.has_electricity:
            score += 25
            factors.append("no_electricity")
        if not household.has_running_water:
            score += 25
            factors.append("no_water")

        persons_per_room = household.household_size / household.number_of_rooms
        if persons_per_room >= 4:
            score += 20
            factors.append("overcrowding")
        elif persons_per_room >= 3:
            score += 15
            factors.append("overcrowding")
        elif persons_per_room >= 2:
            score += 10

        if not household.has_toilet:
            score += 15
            factors.append("no_sanitation")

        return _clamp(score), factors

    def _health(self, person: PersonRecord, household: HouseholdRecord) -> DimensionResult:
        score = 0.0
        factors = []

        if person.has_chronic_illness or household.has_chronic_illness:
            score += 30
            factors.append("chronic_illness")
        if person.has_disability or household.has_disability:
            score += 25
            factors.append("disability")
        if not household.has_health_insurance:
            score += 20
            factors.append("no_health_insurance")
        if household.has_malnutrition:
            score += 20
            factors.append("malnutrition")

        if household.health_center_distance >= 10:
            score += 15
            factors.append("no_medical_access")
        elif household.health_center_distance >= 5:
            score += 10

        return _clamp(score), factors

    def _education(self, person: PersonRecord, household: HouseholdRecord) -> DimensionResult:
        score = 0.0
        factors = []

        level = person.education_level
        if _matches(level, "aucun", "none"):
            score += 30
            factors.append("no_education")
        elif _matches(level, "primaire", "primary"):
            score += 20
        elif _matches(level, "secondaire", "secondary"):
            score += 10

        if person.is_illiterate:
            score += 25
            factors.append("illiteracy")

        if household.children_out_of_school >= 2:
            score += 25
            factors.append("children_out_of_school")
        elif household.children_out_of_school == 1:
            score += 15
            factors.append("children_out_of_school")

        if household.has_unpaid_school_fees:
            score += 20
            factors.append("unpaid_school_fees")

        return _clamp(score), factors

    def _social(self, person: PersonRecord, household: HouseholdRecord, today: date) -> DimensionResult:
        score = 0.0
        factors = []

        if household.is_socially_isolated:
            score += 30
            factors.append("social_isolation")
        if household.is_single_parent:
            score += 25
            factors.append("single_parent")
        if self.calculate_age(person.birth_date, today) >= self.ELDERLY_AGE and household.household_size == 1:
            score += 25
            factors.append("elderly_alone")
        if not household.has_family_support:
            score += 20
            factors.append("no_family_support")

        return _clamp(score), factors

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_age(birth_date: Optional[date], today: date) -> int:
        if birth_date is None:
            return 0
        age = today.year - birth_date.year
        if (today.month, today.day) < (birth_date.month, birth_date.day):
            age -= 1
        return age

    @staticmethod
    def coerce(model, record, label: str):
        if isinstance(record, model):
            return record
        if not isinstance(record, dict):
            raise InvalidRecordError(f"{label} record must be a mapping, got {type(record).__name__}")
        try:
            return model.model_validate(record)
        except ValidationError as exc:
            raise InvalidRecordError(f"Invalid {label} record: {exc.errors()[0]['msg']}") from exc
