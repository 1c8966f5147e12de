# coderoom/api/routes/root.py

from fastapi import APIRouter

from coderoom import __version__

router = APIRouter()


@router.get("/")
async def root():
    """
    Root endpoint - API information.

    Returns basic info about the API and its features.
    """
    return {
        "message": "Code Rooms - collaborative editing broker",
        "version": __version__,
        "features": ["shared_code", "language_sync", "typing_presence", "chat", "code_execution"],
        "endpoints": {
            "websocket": "/ws",
            "rooms": "/rooms",
            "health": "/health",
            "metrics": "/metrics",
        },
    }
