from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.core.security import CurrentUser, require_admin
from app.db.session import get_db
from app.schemas.common import ApiResponse
from app.schemas.pricing_config import (
    CacheClearOut,
    PricingConfigCreate,
    PricingConfigHistoryOut,
    PricingConfigOut,
    PricingConfigUpdate,
)
from app.services import pricing_config as store
from app.services.pricing_cache import pricing_cache

router = APIRouter(
    prefix="/admin/pricing",
    tags=["admin-pricing"],
    dependencies=[Depends(require_admin)],
)


@router.get("/config", response_model=ApiResponse[PricingConfigOut])
async def get_active_pricing_config(db: AsyncSession = Depends(get_db)):
    config = await store.get_active_config(db)
    return ApiResponse[PricingConfigOut](data=PricingConfigOut.model_validate(config))


@router.get("/configs", response_model=ApiResponse[List[PricingConfigOut]])
async def list_pricing_configs(db: AsyncSession = Depends(get_db)):
    configs = await store.list_configs(db)
    return ApiResponse[List[PricingConfigOut]](
        data=[PricingConfigOut.model_validate(c) for c in configs]
    )


@router.post("/config", response_model=ApiResponse[PricingConfigOut], status_code=201)
async def create_pricing_config(
    payload: PricingConfigCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    config = await store.create_config(
        db,
        payload.fields(),
        created_by=current_user.id,
        set_as_active=payload.set_as_active,
    )
    if payload.set_as_active:
        await pricing_cache.invalidate()
    return ApiResponse[PricingConfigOut](data=PricingConfigOut.model_validate(config))


@router.put("/config/{config_id}", response_model=ApiResponse[PricingConfigOut])
async def update_pricing_config(
    config_id: int,
    payload: PricingConfigUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    if not payload.change_reason or not payload.change_reason.strip():
        raise ValidationError(
            "change_reason is required for audit trail",
            code="MISSING_FIELD",
            field="change_reason",
        )

    config = await store.update_config(
        db,
        config_id,
        payload.changes(),
        reason=payload.change_reason.strip(),
        changed_by=current_user.id,
    )
    await pricing_cache.invalidate()
    return ApiResponse[PricingConfigOut](data=PricingConfigOut.model_validate(config))


@router.post("/config/{config_id}/activate", response_model=ApiResponse[PricingConfigOut])
async def activate_pricing_config(
    config_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
):
    config = await store.activate_config(db, config_id, changed_by=current_user.id)
    await pricing_cache.invalidate()
    return ApiResponse[PricingConfigOut](data=PricingConfigOut.model_validate(config))


@router.get("/config/{config_id}/history", response_model=ApiResponse[List[PricingConfigHistoryOut]])
async def get_pricing_config_history(
    config_id: int,
    limit: Optional[int] = Query(None, ge=1, le=settings.PRICING_HISTORY_MAX_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    history = await store.get_config_history(db, config_id, limit)
    return ApiResponse[List[PricingConfigHistoryOut]](
        data=[PricingConfigHistoryOut.model_validate(h) for h in history]
    )


@router.post("/cache/clear", response_model=ApiResponse[CacheClearOut])
async def clear_pricing_cache():
    await pricing_cache.invalidate()
    return ApiResponse[CacheClearOut](
        data=CacheClearOut(cleared=True, timestamp=datetime.now(timezone.utc))
    )
