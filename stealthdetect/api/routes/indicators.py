"""Indicator lookup routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ...dependencies import get_indicator_store
from ...intel.indicator_store import IndicatorStore

router = APIRouter(prefix="/indicators", tags=["indicators"])


@router.get("/check")
async def check_indicator(
    domain: Optional[str] = Query(None),
    scheme: Optional[str] = Query(None),
    package: Optional[str] = Query(None),
    store: IndicatorStore = Depends(get_indicator_store),
):
    """Check a domain, URL scheme or package identifier against the indicator table."""
    if not any((domain, scheme, package)):
        raise HTTPException(status_code=400, detail="Provide domain, scheme or package")

    results = {}
    if domain:
        label = store.label_for_domain(domain)
        results["domain"] = {"value": domain, "known": label is not None, "label": label}
    if scheme:
        label = store.label_for_scheme(scheme)
        results["scheme"] = {"value": scheme, "known": label is not None, "label": label}
    if package:
        label = store.label_for_package(package)
        results["package"] = {"value": package, "known": label is not None, "label": label}
    return results


@router.get("/stats")
async def get_indicator_stats(store: IndicatorStore = Depends(get_indicator_store)):
    return store.get_stats()
