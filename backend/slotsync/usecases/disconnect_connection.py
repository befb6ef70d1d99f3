from __future__ import annotations
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..errors import NotFoundError
from ..repositories.connection_repository import ConnectionRepository, SqlAlchemyConnectionRepository
from ..repositories.event_repository import EventRepository, SqlAlchemyEventRepository
from ..services.token_vault import TokenVault

logger = logging.getLogger(__name__)


@dataclass
class DisconnectResult:
    connection_id: str
    revoked: bool
    deleted_events: int


class DisconnectConnectionUseCase:
    def __init__(
        self,
        token_vault: TokenVault,
        connection_repo: ConnectionRepository | None = None,
        event_repo: EventRepository | None = None,
    ):
        self.token_vault = token_vault
        self.connection_repo = connection_repo or SqlAlchemyConnectionRepository()
        self.event_repo = event_repo or SqlAlchemyEventRepository()

    def execute(self, db: Session, connection_id: str, user_id: str | None = None) -> DisconnectResult:
        conn = self.connection_repo.get(db, connection_id)
        if conn is None or (user_id is not None and conn.user_id != user_id):
            raise NotFoundError("CONNECTION_NOT_FOUND", "Provider connection not found")

        # Continue even if revocation fails
        revoked = self.token_vault.revoke(connection_id)

        deleted = self.event_repo.delete_by_connection(db, connection_id)
        self.connection_repo.delete(db, conn)
        db.commit()
        logger.info("Disconnected connection %s (revoked=%s, events deleted=%d)", connection_id, revoked, deleted)
        return DisconnectResult(connection_id=connection_id, revoked=revoked, deleted_events=deleted)
