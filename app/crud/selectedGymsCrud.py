"""
CRUD operations for Daily Access gym selections.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Set

from sqlalchemy import select, update, and_, or_, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.conversions import as_utc, utcnow
from app.core.errors import AlreadySelected, NotFound, SlotLimitExceeded
from app.models import Gym, SelectedGym
from app.models.gymModel import (
    SELECTION_PENDING, SELECTION_ACTIVE, SELECTION_REMOVED, SLOT_HOLDING_STATUSES
)


@dataclass
class SelectedGymData:
    """Daily Access selection row with gym details"""
    id: int
    gym_id: int
    status: str
    added_at: datetime
    effective_from: datetime
    gym_name: Optional[str] = None


@dataclass
class SelectionsData:
    current: List[SelectedGymData] = field(default_factory=list)
    pending: List[SelectedGymData] = field(default_factory=list)
    # Removed rows that stay usable until their effective_from
    ending: List[SelectedGymData] = field(default_factory=list)
    max_slots: int = 0


def _selection_to_data(selection: SelectedGym) -> SelectedGymData:
    return SelectedGymData(
        id=selection.id,
        gym_id=selection.gym_id,
        status=selection.status,
        added_at=as_utc(selection.added_at),
        effective_from=as_utc(selection.effective_from),
        gym_name=selection.gym.name if selection.gym else None,
    )


async def get_gym(db: AsyncSession, gym_id: int) -> Optional[Gym]:
    result = await db.execute(select(Gym).where(Gym.id == gym_id))
    return result.scalar_one_or_none()


async def create_gym(
    db: AsyncSession,
    *,
    name: str,
    address: Optional[str] = None,
    commit: bool = True
) -> Gym:
    gym = Gym(name=name, address=address, is_active=True)
    db.add(gym)
    if commit:
        await db.commit()
        await db.refresh(gym)
    else:
        await db.flush()
    return gym


async def promote_due_selections(
    db: AsyncSession,
    member_id: int,
    now: Optional[datetime] = None,
    commit: bool = True
) -> int:
    """Activate pending selections whose billing period has started."""
    now = now or utcnow()
    result = await db.execute(
        update(SelectedGym)
        .where(
            and_(
                SelectedGym.member_id == member_id,
                SelectedGym.status == SELECTION_PENDING,
                SelectedGym.effective_from <= now,
            )
        )
        .values(status=SELECTION_ACTIVE)
        .execution_options(synchronize_session=False)
    )
    if commit:
        await db.commit()
    return result.rowcount or 0


async def count_slot_holding_selections(db: AsyncSession, member_id: int) -> int:
    result = await db.execute(
        select(func.count(SelectedGym.id)).where(
            and_(
                SelectedGym.member_id == member_id,
                SelectedGym.status.in_(SLOT_HOLDING_STATUSES),
            )
        )
    )
    return result.scalar() or 0


async def get_holding_selection(
    db: AsyncSession,
    member_id: int,
    gym_id: int
) -> Optional[SelectedGym]:
    result = await db.execute(
        select(SelectedGym)
        .options(selectinload(SelectedGym.gym))
        .where(
            and_(
                SelectedGym.member_id == member_id,
                SelectedGym.gym_id == gym_id,
                SelectedGym.status.in_(SLOT_HOLDING_STATUSES),
            )
        )
    )
    return result.scalars().first()


async def add_selected_gym(
    db: AsyncSession,
    *,
    member_id: int,
    gym_id: int,
    effective_from: datetime,
    max_slots: int,
    commit: bool = True
) -> SelectedGymData:
    """Insert a pending selection that becomes active at effective_from."""
    gym = await get_gym(db, gym_id)
    if gym is None or not gym.is_active:
        raise NotFound("Gym", gym_id)

    if await count_slot_holding_selections(db, member_id) >= max_slots:
        raise SlotLimitExceeded(max_slots)

    if await get_holding_selection(db, member_id, gym_id) is not None:
        raise AlreadySelected(gym_id)

    selection = SelectedGym(
        member_id=member_id,
        gym_id=gym_id,
        status=SELECTION_PENDING,
        added_at=utcnow(),
        effective_from=effective_from,
    )
    selection.gym = gym
    db.add(selection)

    if commit:
        await db.commit()
    else:
        await db.flush()
    return _selection_to_data(selection)


async def remove_selected_gym(
    db: AsyncSession,
    *,
    member_id: int,
    gym_id: int,
    effective_from: datetime,
    commit: bool = True
) -> Optional[SelectedGymData]:
    """
    Drop a gym from the selection.

    Pending rows never took effect and are deleted outright (returns None);
    active rows stay usable until effective_from and are marked removed.
    """
    selection = await get_holding_selection(db, member_id, gym_id)
    if selection is None:
        raise NotFound("Selected gym", gym_id)

    if selection.status == SELECTION_PENDING:
        await db.delete(selection)
        data = None
    else:
        selection.status = SELECTION_REMOVED
        selection.effective_from = effective_from
        data = _selection_to_data(selection)

    if commit:
        await db.commit()
    else:
        await db.flush()
    return data


async def list_selections(
    db: AsyncSession,
    member_id: int,
    now: Optional[datetime] = None
) -> SelectionsData:
    now = now or utcnow()
    result = await db.execute(
        select(SelectedGym)
        .options(selectinload(SelectedGym.gym))
        .where(SelectedGym.member_id == member_id)
        .order_by(SelectedGym.added_at.asc(), SelectedGym.id.asc())
    )

    selections = SelectionsData()
    for selection in result.scalars().all():
        if selection.status == SELECTION_ACTIVE:
            selections.current.append(_selection_to_data(selection))
        elif selection.status == SELECTION_PENDING:
            selections.pending.append(_selection_to_data(selection))
        elif as_utc(selection.effective_from) > now:
            selections.ending.append(_selection_to_data(selection))
    return selections


async def get_usable_gym_ids(
    db: AsyncSession,
    member_id: int,
    now: Optional[datetime] = None
) -> Set[int]:
    """Gyms a Daily Access member may visit right now."""
    now = now or utcnow()
    result = await db.execute(
        select(SelectedGym.gym_id).where(
            and_(
                SelectedGym.member_id == member_id,
                or_(
                    SelectedGym.status == SELECTION_ACTIVE,
                    and_(
                        SelectedGym.status == SELECTION_REMOVED,
                        SelectedGym.effective_from > now,
                    ),
                ),
            )
        )
    )
    return set(result.scalars().all())
