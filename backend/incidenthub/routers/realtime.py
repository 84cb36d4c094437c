from fastapi import APIRouter, WebSocket

router = APIRouter(tags=["realtime"])


@router.websocket("/ws/incidents")
async def incident_events(websocket: WebSocket):
    """Push channel for incident-created / incident-updated events."""
    await websocket.app.state.hub.stream(websocket)
