from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from ..db.session import get_db
from ..repositories.connection_repository import SqlAlchemyConnectionRepository
from ..usecases.disconnect_connection import DisconnectConnectionUseCase
from .deps import get_disconnect_usecase

router = APIRouter(prefix="/connections", tags=["connections"])

repo = SqlAlchemyConnectionRepository()


@router.get("")
def list_connections(user_id: str = Query(..., alias="userId"), db: Session = Depends(get_db)):
    # Tokens never leave the vault.
    return {"connections": [
        {
            "id": c.id,
            "vendor": c.vendor,
            "calendarId": c.external_calendar_id,
            "status": c.status,
            "syncEnabled": bool(c.sync_enabled),
            "lastSyncedAt": c.last_synced_at,
            "lastFullSyncAt": c.last_full_sync_at,
            "lastError": c.last_error,
        }
        for c in repo.list_by_user(db, user_id)
    ]}


@router.delete("/{connection_id}")
def disconnect(
    connection_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    usecase: DisconnectConnectionUseCase = Depends(get_disconnect_usecase),
):
    result = usecase.execute(db, connection_id, user_id=user_id)
    return {"connectionId": result.connection_id, "revoked": result.revoked, "deletedEvents": result.deleted_events}
