from fastapi import Depends, HTTPException, status

from liquidation_api.middleware.auth import get_current_actor
from liquidation_api.services.permissions import Actor, has_capability


def require_capability(*capabilities: str):
    """
    FastAPI dependency factory: the actor's role must grant at least one of
    ``capabilities``. Services re-check the exact capability plus ownership
    and region scope; this only rejects obviously wrong callers early.

    Usage:
        @router.post("/{liquidation_id}/endorse-to-coa")
        async def endorse(
            actor: Actor = Depends(get_current_actor),
            _auth: None = Depends(require_capability(ENDORSE_TO_COA)),
        ):
    """
    async def check_capability(actor: Actor = Depends(get_current_actor)):
        if not any(has_capability(actor, c) for c in capabilities):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": {
                        "code": "UNAUTHORIZED_ACTION",
                        "message": (
                            f"Role '{actor.role}' cannot perform this action. "
                            f"Required: {capabilities}"
                        ),
                    }
                },
            )
        return None

    return check_capability
