"""Person and household records captured by the enrollment forms."""
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _FormRecord(BaseModel):
    # Mobile forms post camelCase keys; the registry API uses snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class PersonRecord(_FormRecord):
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[date] = None
    occupation_status: Optional[str] = None
    education_level: Optional[str] = None
    is_illiterate: bool = False
    has_chronic_illness: bool = False
    has_disability: bool = False


class HouseholdRecord(_FormRecord):
    id: Optional[str] = None
    household_size: int = Field(default=1, ge=1)
    monthly_income: float = Field(default=0.0, ge=0)  # FCFA
    dependents: int = Field(default=0, ge=0)
    has_savings: bool = False

    housing_type: Optional[str] = None
    number_of_rooms: int = Field(default=1, ge=1)
    has_electricity: bool = False
    has_running_water: bool = False
    has_toilet: bool = False

    has_chronic_illness: bool = False
    has_disability: bool = False
    has_health_insurance: bool = False
    has_malnutrition: bool = False
    health_center_distance: float = Field(default=0.0, ge=0)  # km

    children_out_of_school: int = Field(default=0, ge=0)
    has_unpaid_school_fees: bool = False

    is_socially_isolated: bool = False
    is_single_parent: bool = False
    has_family_support: bool = False
