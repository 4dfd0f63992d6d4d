from fastapi import APIRouter

from realtime.feed import change_feed

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "subscriptions": len(change_feed),
        "backlog": change_feed.backlog(),
    }
