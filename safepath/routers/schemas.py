from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import Coordinate, UserDemographics


class LatLng(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)


class DemographicsIn(BaseModel):
    race_ethnicity: List[str] = []
    gender: Optional[str] = None
    lgbtq_status: Optional[bool] = None
    disability_status: List[str] = []
    religion: Optional[str] = None
    age_range: Optional[str] = None

    def to_domain(self) -> UserDemographics:
        return UserDemographics(
            race_ethnicity=list(self.race_ethnicity),
            gender=self.gender,
            lgbtq_status=self.lgbtq_status,
            disability_status=list(self.disability_status),
            religion=self.religion,
            age_range=self.age_range,
        )
