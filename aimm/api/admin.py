"""Admin endpoints: manual cleanup sweep and service stats."""

from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from aimm.services.cleanup import CleanupService

router = APIRouter(prefix="/admin", tags=["admin"])

_cleanup_service: Optional[CleanupService] = None


def set_cleanup_service(service: CleanupService) -> None:
    """Set the cleanup service instance."""
    global _cleanup_service
    _cleanup_service = service


class CleanupRequest(BaseModel):
    """Request model for cleanup operation."""
    dry_run: bool = False


@router.post("/cleanup")
async def run_cleanup(request: Optional[CleanupRequest] = None):
    """
    Hard-delete soft-deleted tracks whose retention window has elapsed.

    - dry_run: If true, only report what would be deleted
    """
    if _cleanup_service is None:
        raise HTTPException(status_code=503, detail="Cleanup service not initialized")

    request = request or CleanupRequest()
    stats = await _cleanup_service.run(dry_run=request.dry_run)

    return {
        "message": "Dry run complete" if request.dry_run else "Cleanup complete",
        "dry_run": request.dry_run,
        "stats": {
            **stats,
            "errors": stats["errors"][:10],  # Limit errors in response
        },
    }
