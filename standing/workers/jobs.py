"""
Standing Engine - Worker jobs

Background jobs executed by the arq worker:
    recompute_standing      one user, queued after behavior events
    refresh_supplier_tier   one supplier
    refresh_all_standings   hourly sweep: recomputes every user (which also
                            lifts time-boxed suspensions that ran out) and
                            refreshes supplier tiers

A failure for one user is logged and the sweep moves on.
"""
from typing import Optional

import structlog

from standing.errors import StandingError
from standing.services import Services, get_services
from standing.services.users import USERS

logger = structlog.get_logger()


def _services(ctx: Optional[dict]) -> Services:
    if ctx and ctx.get("services") is not None:
        return ctx["services"]
    return get_services()


async def recompute_standing(ctx, user_id: str):
    services = _services(ctx)
    snapshot = services.standing.recompute(user_id)
    return {
        "user_id": user_id,
        "safety_status": snapshot.safety_status.value,
        "safety_score": snapshot.safety_score,
    }


async def refresh_supplier_tier(ctx, supplier_id: str):
    services = _services(ctx)
    result = services.tiers.refresh(supplier_id)
    return {"supplier_id": supplier_id, "tier": result.tier.value}


async def refresh_all_standings(ctx: dict = None):
    """Hourly sweep over every known user."""
    services = _services(ctx)
    logger.info("standing_sweep_start")

    recomputed = 0
    tiers = 0
    failed = 0
    for user in services.store.query(USERS):
        user_id = user.get("user_id")
        if user.get("role") == "admin":
            continue
        try:
            services.standing.recompute(user_id)
            recomputed += 1
            if user.get("role") == "supplier" and services.onboarding.find(user_id) is not None:
                services.tiers.refresh(user_id)
                tiers += 1
        except StandingError as e:
            failed += 1
            logger.error("standing_sweep_user_failed", user_id=user_id, error=e.message)
        except Exception as e:
            # Store errors and malformed documents only cost this user
            failed += 1
            logger.error("standing_sweep_user_crashed", user_id=user_id,
                         error=str(e), type=type(e).__name__, exc_info=True)

    logger.info("standing_sweep_complete",
                recomputed=recomputed,
                tiers_refreshed=tiers,
                failed=failed)
    return {"recomputed": recomputed, "tiers_refreshed": tiers, "failed": failed}
