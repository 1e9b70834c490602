from typing import List, Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import ConflictError
from ..models.client import Client
from ..models.project import Project
from ..utils.logging import get_logger
from .repository import Repository

logger = get_logger(__name__)


class ClientCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    industry: Optional[str] = Field(None, max_length=100)
    website: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    country: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = None


class ClientUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    industry: Optional[str] = Field(None, max_length=100)
    website: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    contact_person: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    country: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    address: Optional[str] = None
    is_active: Optional[bool] = None


class ClientService:
    """Clients that projects are delivered for."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = Repository(db)

    async def list_clients(
        self,
        include_inactive: bool = False,
        name: Optional[str] = None,
        industry: Optional[str] = None,
        country: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Client]:
        stmt = select(Client)
        if not include_inactive:
            stmt = stmt.where(Client.is_active.is_(True))
        if name:
            stmt = stmt.where(Client.name.ilike(f"%{name}%"))
        if industry:
            stmt = stmt.where(Client.industry.ilike(f"%{industry}%"))
        if country:
            stmt = stmt.where(Client.country.ilike(f"%{country}%"))
        stmt = stmt.order_by(Client.name, Client.id).limit(limit).offset(offset)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_client(self, client_id: int) -> Client:
        return await self.repo.get_or_raise(Client, client_id, "Client")

    async def list_client_projects(self, client_id: int) -> List[Project]:
        await self.get_client(client_id)

        stmt = select(Project).where(Project.client_id == client_id).order_by(Project.id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create_client(self, data: ClientCreate) -> Client:
        try:
            client = Client(**data.model_dump(), is_active=True)
            self.db.add(client)
            await self.db.commit()
            await self.db.refresh(client)

            logger.info(f"Created client {client.id} '{client.name}'")
            return client

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to create client: {str(e)}")
            raise

    async def update_client(self, client_id: int, patch: ClientUpdate) -> Client:
        try:
            client = await self.repo.get_or_raise(Client, client_id, "Client", lock=True)
            changes: Dict[str, Any] = patch.model_dump(exclude_unset=True)

            for field, value in changes.items():
                if field in ("name", "is_active") and value is None:
                    continue
                setattr(client, field, value)

            await self.db.commit()
            await self.db.refresh(client)
            return client

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to update client {client_id}: {str(e)}")
            raise

    async def toggle_client_status(self, client_id: int) -> Client:
        try:
            client = await self.repo.get_or_raise(Client, client_id, "Client", lock=True)
            client.is_active = not client.is_active

            await self.db.commit()
            await self.db.refresh(client)

            logger.info(f"Client {client_id} {'activated' if client.is_active else 'deactivated'}")
            return client

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to toggle client {client_id}: {str(e)}")
            raise

    async def delete_client(self, client_id: int) -> None:
        """Delete a client that no project refers to."""

        try:
            client = await self.repo.get_or_raise(Client, client_id, "Client", lock=True)

            project_count = await self.repo.count_client_projects(client_id)
            if project_count > 0:
                raise ConflictError(
                    "Cannot delete client with projects; reassign or remove them first",
                    details={"client_id": client_id, "project_count": project_count}
                )

            await self.db.delete(client)
            await self.db.commit()

            logger.info(f"Deleted client {client_id}")

        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to delete client {client_id}: {str(e)}")
            raise
