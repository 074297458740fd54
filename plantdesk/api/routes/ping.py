from fastapi import APIRouter

from plantdesk.dependencies.auth import CurrentActor
from plantdesk.metrics import metrics_registry

router = APIRouter(tags=["health"])


@router.get("/ping", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ping/whoami", summary="Echo the authenticated actor")
async def whoami(actor: CurrentActor) -> dict[str, object]:
    return {
        "user_id": actor.user_id,
        "role": actor.role.value,
        "tier": actor.tier.value,
        "tenant_id": actor.tenant_id,
        "plant_ids": sorted(actor.plant_ids),
    }


@router.get("/metrics", summary="In-process metrics snapshot")
async def metrics() -> dict[str, dict[str, object]]:
    return metrics_registry.snapshot()
