from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..auth.security import user_from_token
from ..db import get_db
from ..services.change_feed import feed


router = APIRouter(tags=["realtime"])

TABLES = {
    "calendar_events",
    "talent_profiles",
    "business_events",
    "business_event_contact",
    "business_event_travel",
    "business_event_hotel",
    "business_event_transport",
    "profiles",
}


@router.websocket("/ws/changes")
async def ws_changes(websocket: WebSocket, token: Optional[str] = None, table: Optional[str] = None, db: Session = Depends(get_db)):
    if not token or table not in TABLES:
        await websocket.close(code=4401 if not token else 4404)
        return
    try:
        user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    await feed.subscribe(table, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            # Keep-alives only; subscribers never publish
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await feed.unsubscribe(table, websocket)
