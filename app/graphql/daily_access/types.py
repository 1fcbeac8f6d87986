from datetime import datetime
from typing import Optional, List

import strawberry
from app.crud.selectedGymsCrud import SelectedGymData, SelectionsData


@strawberry.type
class SelectedGym:
    id: int
    gym_id: int
    gym_name: Optional[str]
    status: str
    added_at: datetime
    effective_from: datetime

    @classmethod
    def from_data(cls, data: SelectedGymData) -> "SelectedGym":
        return cls(
            id=data.id,
            gym_id=data.gym_id,
            gym_name=data.gym_name,
            status=data.status,
            added_at=data.added_at,
            effective_from=data.effective_from,
        )


@strawberry.type
class GymSelections:
    current: List[SelectedGym]
    pending: List[SelectedGym]
    ending: List[SelectedGym]
    max_slots: int

    @classmethod
    def from_data(cls, data: SelectionsData) -> "GymSelections":
        return cls(
            current=[SelectedGym.from_data(s) for s in data.current],
            pending=[SelectedGym.from_data(s) for s in data.pending],
            ending=[SelectedGym.from_data(s) for s in data.ending],
            max_slots=data.max_slots,
        )


@strawberry.input
class GymSelectionInput:
    gym_id: int
    member_id: Optional[int] = None


# Response types
@strawberry.type
class GymSelectionResponse:
    """Response for addGym / removeGym; selection is null when a pending row was deleted"""
    success: bool
    error_code: Optional[str]
    message: str
    selection: Optional[SelectedGym] = None


@strawberry.type
class GymSelectionsResponse:
    success: bool
    error_code: Optional[str]
    message: str
    selections: Optional[GymSelections] = None


@strawberry.type
class RollCycleResponse:
    success: bool
    error_code: Optional[str]
    message: str
    activated: int = 0
