from __future__ import annotations
from typing import Protocol, List, Optional
from datetime import datetime
from sqlalchemy.orm import Session

from ..db import models
from ..domain.enums import ConnectionStatus


class ConnectionRepository(Protocol):
    def get(self, db: Session, connection_id: str) -> Optional[models.ProviderConnection]: ...
    def list_syncable(self, db: Session) -> List[models.ProviderConnection]: ...
    def list_by_user(self, db: Session, user_id: str) -> List[models.ProviderConnection]: ...
    def commit_cursor(self, db: Session, connection: models.ProviderConnection, cursor: Optional[str], synced_at: datetime, full_sync: bool) -> None: ...
    def record_failure(self, db: Session, connection_id: str, message: str, status: Optional[str] = None) -> None: ...
    def mark_error(self, db: Session, connection_id: str, message: str) -> None: ...
    def delete(self, db: Session, connection: models.ProviderConnection) -> None: ...


class SqlAlchemyConnectionRepository:
    def get(self, db: Session, connection_id: str) -> Optional[models.ProviderConnection]:
        return db.get(models.ProviderConnection, connection_id)

    def list_syncable(self, db: Session) -> List[models.ProviderConnection]:
        return (
            db.query(models.ProviderConnection)
            .filter(
                models.ProviderConnection.status == ConnectionStatus.ACTIVE.value,
                models.ProviderConnection.sync_enabled.is_(True),
            )
            .order_by(models.ProviderConnection.id)
            .all()
        )

    def list_by_user(self, db: Session, user_id: str) -> List[models.ProviderConnection]:
        return (
            db.query(models.ProviderConnection)
            .filter(models.ProviderConnection.user_id == user_id)
            .order_by(models.ProviderConnection.created_at)
            .all()
        )

    def commit_cursor(
        self,
        db: Session,
        connection: models.ProviderConnection,
        cursor: Optional[str],
        synced_at: datetime,
        full_sync: bool,
    ) -> None:
        connection.sync_cursor = cursor
        connection.last_synced_at = synced_at
        if full_sync:
            connection.last_full_sync_at = synced_at
        connection.status = ConnectionStatus.ACTIVE.value
        connection.last_error = None
        connection.updated_at = synced_at
        db.commit()

    def record_failure(self, db: Session, connection_id: str, message: str, status: Optional[str] = None) -> None:
        # Fresh read: the failing run's session state may be stale or rolled back.
        conn = db.get(models.ProviderConnection, connection_id)
        if conn is None:
            return
        conn.last_error = message[:500]
        if status:
            conn.status = status
        db.commit()

    def mark_error(self, db: Session, connection_id: str, message: str) -> None:
        self.record_failure(db, connection_id, message, ConnectionStatus.ERROR.value)

    def delete(self, db: Session, connection: models.ProviderConnection) -> None:
        db.delete(connection)
