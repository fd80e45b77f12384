"""Admin Circuit Breaker Endpoints

Inspection and manual recovery of the outbound circuit breakers kept on
``app.state.circuit_breakers``.

**Security Note**: Access control for ``/admin`` routes is enforced by the
surrounding platform. Every reset is logged for audit purposes.
"""

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, status

from airavat.core.logging import logger
from airavat.domain.resilience import CircuitBreakerRegistry

from .schemas import CircuitBreakerListResponse, CircuitBreakerResetResponse

router = APIRouter()


def get_registry(request: Request) -> CircuitBreakerRegistry:
    return request.app.state.circuit_breakers


@router.get("/", response_model=CircuitBreakerListResponse)
async def list_circuit_breakers(request: Request):
    registry = get_registry(request)
    statuses = registry.get_all_status()
    return CircuitBreakerListResponse(
        circuit_breakers=statuses,
        open_circuits=registry.open_circuits(),
        count=len(statuses),
    )


@router.post("/reset", response_model=CircuitBreakerResetResponse)
async def reset_all_circuit_breakers(request: Request):
    registry = get_registry(request)
    registry.reset_all()
    client_ip = request.client.host if request.client else "unknown"
    logger.warning("circuit_breakers_reset_all", client_ip=client_ip, count=len(registry.names()))
    return CircuitBreakerResetResponse(message="All circuit breakers reset", reset=registry.names())


@router.get("/{name}", response_model=Dict[str, Any])
async def get_circuit_breaker(name: str, request: Request):
    """Status of one breaker.

    Raises:
        HTTPException: 404 when no breaker with this name exists.
    """
    breaker_status = get_registry(request).get_status(name)
    if breaker_status is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown circuit breaker: {name}")
    return breaker_status


@router.post("/{name}/reset", response_model=CircuitBreakerResetResponse)
async def reset_circuit_breaker(name: str, request: Request):
    """Force a breaker back to CLOSED after the dependency recovered.

    Raises:
        HTTPException: 404 when no breaker with this name exists.
    """
    if not get_registry(request).reset(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown circuit breaker: {name}")

    client_ip = request.client.host if request.client else "unknown"
    logger.warning("circuit_breaker_manual_reset", name=name, client_ip=client_ip)
    return CircuitBreakerResetResponse(message=f"Circuit breaker {name} reset", reset=[name])
