"""
Network Analysis API Routes
Company networks, ownership chains, address clusters, director networks and
risk networks built from registry data.
"""
from typing import Awaitable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from core.errors import EntityUnreachable, UnsupportedEntityType
from core.schemas import AnalysisResult, OwnershipDirection
from network.engine import NetworkAnalysisEngine, get_network_engine

router = APIRouter()


async def _analyze(call: Awaitable[AnalysisResult], description: str) -> AnalysisResult:
    """Await an analysis and translate engine failures into HTTP errors."""
    try:
        return await call
    except EntityUnreachable as e:
        status = 404 if e.not_found else 502
        logger.warning(f"[network_routes] {description}: {e}")
        raise HTTPException(
            status_code=status,
            detail={"message": str(e), "entity_id": e.entity_id, "reasons": e.reasons},
        )
    except UnsupportedEntityType as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"[network_routes] {description} failed")
        raise HTTPException(status_code=500, detail=f"Error running {description}: {str(e)}")


@router.get("/company/{company_number}", response_model=AnalysisResult)
async def company_network(
    company_number: str,
    depth: Optional[int] = Query(None, ge=0, description="Hops from the company; clamped to the server ceiling"),
    cache: bool = Query(True, description="Serve a cached result when one is fresh"),
    engine: NetworkAnalysisEngine = Depends(get_network_engine),
):
    """
    Build the relationship network around a company.

    Returns every officer, PSC, address and related company within `depth`
    hops, with structural network metrics.
    """
    logger.info(f"[company_network] {company_number} depth={depth} cache={cache}")
    return await _analyze(
        engine.analyze_company_network(company_number, depth=depth, use_cache=cache),
        "company network analysis",
    )


@router.get("/ownership/{company_number}", response_model=AnalysisResult)
async def ownership_chain(
    company_number: str,
    direction: OwnershipDirection = Query(OwnershipDirection.UP),
    depth: Optional[int] = Query(None, ge=0),
    cache: bool = Query(True),
    engine: NetworkAnalysisEngine = Depends(get_network_engine),
):
    """Resolve ownership chains and effective ownership percentages."""
    logger.info(f"[ownership_chain] {company_number} direction={direction.value} depth={depth}")
    return await _analyze(
        engine.analyze_ownership(company_number, direction=direction, depth=depth, use_cache=cache),
        "ownership analysis",
    )


@router.get("/address", response_model=AnalysisResult)
async def address_cluster(
    address: str = Query(..., min_length=1),
    threshold: Optional[int] = Query(None, ge=1),
    cache: bool = Query(True),
    engine: NetworkAnalysisEngine = Depends(get_network_engine),
):
    """Cluster the companies registered at an address."""
    logger.info(f"[address_cluster] '{address}' threshold={threshold}")
    return await _analyze(
        engine.analyze_address_cluster(address, threshold=threshold, use_cache=cache),
        "address cluster analysis",
    )


@router.get("/director", response_model=AnalysisResult)
async def director_network(
    name: str = Query(..., min_length=1),
    cache: bool = Query(True),
    engine: NetworkAnalysisEngine = Depends(get_network_engine),
):
    """Appointments and co-directors for a director name."""
    logger.info(f"[director_network] '{name}'")
    return await _analyze(
        engine.analyze_director_network(name, use_cache=cache),
        "director network analysis",
    )


@router.get("/risk", response_model=AnalysisResult)
async def risk_network(
    entity_type: str = Query(..., description="company, officer or address"),
    entity_id: str = Query(..., min_length=1),
    depth: Optional[int] = Query(None, ge=0),
    decay: Optional[float] = Query(None, gt=0, lt=1),
    cache: bool = Query(True),
    engine: NetworkAnalysisEngine = Depends(get_network_engine),
):
    """Risk scores propagated to an entity from flagged neighbours."""
    logger.info(f"[risk_network] {entity_type} {entity_id} depth={depth}")
    return await _analyze(
        engine.analyze_risk_network(entity_type, entity_id, depth=depth, decay=decay, use_cache=cache),
        "risk network analysis",
    )
