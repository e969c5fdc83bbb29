"""Page view tracking and reporting endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from app.config.view_settings import PUBLIC_ORIGIN
from app.schemas import (
    RangeReport,
    RenameShopPayload,
    RenameShopResponse,
    ShopRef,
    ShopViewSummary,
    TrackViewPayload,
    TrackViewResponse,
    TransferResult,
    ViewCounts,
)
from app.security.guards import enforce_same_origin, rate_limit_request
from app.services import view_counter
from app.services.auth_utils import require_user_id
from app.services.page_views_dao import SupabasePageViewsDAO
from app.services.postgrest_client import extract_bearer_token
from app.services.view_reports import aggregate_views
from app.services.view_rollup import transfer_views_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/views", tags=["Views"])


async def get_public_dao() -> SupabasePageViewsDAO:
    """DAO running with the service key, for anonymous menu visitors."""

    return SupabasePageViewsDAO()


async def get_access_token(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> str:
    """Extract and sanity-check the Supabase bearer token."""

    token = extract_bearer_token(authorization)
    require_user_id(token)
    return token


async def get_user_dao(access_token: str = Depends(get_access_token)) -> SupabasePageViewsDAO:
    """DAO scoped to the caller token so row level security applies."""

    return SupabasePageViewsDAO(access_token)


def _parse_shop_refs(values: Optional[List[str]]) -> List[ShopRef]:
    shops: List[ShopRef] = []
    for raw in values or []:
        identifier, _, name = raw.partition(":")
        try:
            shops.append(ShopRef(id=int(identifier), name=name))
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=f"Boutique invalide : {raw}") from exc
    return shops


@router.get("/shops/{shop_id}/counts", response_model=ViewCounts)
async def shop_view_counts(
    shop_id: int,
    dao: SupabasePageViewsDAO = Depends(get_public_dao),
) -> ViewCounts:
    today = await view_counter.get_today_by_id(dao, shop_id)
    total = await view_counter.get_total_by_id(dao, shop_id)
    return ViewCounts(today=today.value, total=total.value)


@router.post("/track", response_model=TrackViewResponse)
async def track_view(
    payload: TrackViewPayload,
    request: Request,
    dao: SupabasePageViewsDAO = Depends(get_public_dao),
) -> TrackViewResponse:
    enforce_same_origin(request)
    rate_limit_request(request, scope="page-view", limit=30, window_seconds=60)
    page_url = view_counter.build_shop_url(PUBLIC_ORIGIN, payload.name, payload.shop_id)
    result = await view_counter.increment(dao, page_url, payload.shop_id)
    return TrackViewResponse(page_url=page_url, view_count=result.value, counted=result.ok)


@router.get("/summary", response_model=ShopViewSummary)
async def shops_summary(
    shop: Annotated[Optional[List[str]], Query(description="id:nom")] = None,
    dao: SupabasePageViewsDAO = Depends(get_user_dao),
) -> ShopViewSummary:
    return await view_counter.summarize_shops(dao, PUBLIC_ORIGIN, _parse_shop_refs(shop))


@router.get("/report", response_model=RangeReport)
async def views_report(
    from_date: date,
    to_date: date,
    prefix: Annotated[Optional[List[str]], Query()] = None,
    dao: SupabasePageViewsDAO = Depends(get_user_dao),
) -> RangeReport:
    return await aggregate_views(dao, from_date, to_date, prefix)


@router.post("/transfer", response_model=TransferResult)
async def transfer_now(
    dao: SupabasePageViewsDAO = Depends(get_user_dao),
) -> TransferResult:
    result = await transfer_views_now(dao)
    if result.error:
        logger.warning("On-demand transfer finished with error: %s", result.error)
    return result


@router.post("/rename", response_model=RenameShopResponse)
async def rename_shop_views(
    payload: RenameShopPayload,
    dao: SupabasePageViewsDAO = Depends(get_user_dao),
) -> RenameShopResponse:
    old_url = view_counter.build_shop_url(PUBLIC_ORIGIN, payload.old_name, payload.shop_id)
    new_url = view_counter.build_shop_url(PUBLIC_ORIGIN, payload.new_name, payload.shop_id)
    result = await view_counter.rename_page_urls(dao, old_url, new_url)
    return RenameShopResponse(old_url=old_url, new_url=new_url, updated=result.value)
