from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class ReservationLine(BaseModel):
    variant_id: int
    quantity: int = Field(gt=0)


class Shortfall(BaseModel):
    variant_id: int
    product_title: Optional[str] = None
    requested: int
    available: int


class ReserveResult(BaseModel):
    ok: bool
    reservation_group_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    insufficient: List[Shortfall] = []


class TransitionResult(BaseModel):
    affected: int

    @property
    def settled_elsewhere(self) -> bool:
        return self.affected == 0


class AvailabilityIn(BaseModel):
    variant_ids: List[int] = Field(min_length=1, max_length=200)
