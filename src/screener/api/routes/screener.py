"""Screener routes: preset catalogue, preset runs, custom filters."""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from screener.query.conditions import ScreenerFilter
from screener.query.engine import MAX_PAGE_SIZE, ScreenerEngine, ScreenerResult
from screener.query.presets import PRESETS, get_preset
from screener.services import get_screener
from screener.upstream.errors import UpstreamFailure

router = APIRouter()


class ScreenerQuery(BaseModel):
    filter: ScreenerFilter
    page: int = 1
    page_size: int = 50


async def _evaluate(engine: ScreenerEngine, flt: ScreenerFilter, page: int, page_size: int) -> ScreenerResult:
    try:
        return await engine.evaluate(flt, page, page_size)
    except UpstreamFailure as exc:
        raise HTTPException(status_code=503, detail=f"Market data unavailable: {exc}")


@router.get("/presets", response_model=List[Dict[str, Any]])
def list_presets():
    return [p.describe() for p in PRESETS.values()]


@router.get("/presets/{preset_id}", response_model=ScreenerResult)
async def run_preset(
    preset_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    engine: ScreenerEngine = Depends(get_screener),
):
    preset = get_preset(preset_id)
    if preset is None:
        raise HTTPException(status_code=404, detail=f"Unknown preset: {preset_id}")
    return await _evaluate(engine, preset.to_filter(), page, page_size)


@router.post("", response_model=ScreenerResult)
async def run_filter(query: ScreenerQuery, engine: ScreenerEngine = Depends(get_screener)):
    if query.page < 1 or not 1 <= query.page_size <= MAX_PAGE_SIZE:
        raise HTTPException(status_code=422, detail="page must be >= 1 and page_size within bounds")
    return await _evaluate(engine, query.filter, query.page, query.page_size)
