from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from ...database import get_db
from ...core.auth import get_current_user
from ...models.user import User
from ...services.client_service import ClientService, ClientCreate, ClientUpdate
from .projects import ProjectResponse

router = APIRouter()


class ClientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    industry: Optional[str]
    website: Optional[str]
    notes: Optional[str]
    is_active: bool
    contact_person: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    country: Optional[str]
    city: Optional[str]
    address: Optional[str]


@router.get("", response_model=List[ClientResponse])
async def get_clients(
    include_inactive: bool = False,
    name: Optional[str] = None,
    industry: Optional[str] = None,
    country: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """List clients, active ones only unless asked otherwise"""

    client_service = ClientService(db)
    return await client_service.list_clients(
        include_inactive=include_inactive,
        name=name,
        industry=industry,
        country=country,
        limit=limit,
        offset=offset
    )


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
async def create_client(
    request: ClientCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    client_service = ClientService(db)
    return await client_service.create_client(request)


@router.get("/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    client_service = ClientService(db)
    return await client_service.get_client(client_id)


@router.get("/{client_id}/projects", response_model=List[ProjectResponse])
async def get_client_projects(
    client_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    client_service = ClientService(db)
    return await client_service.list_client_projects(client_id)


@router.put("/{client_id}", response_model=ClientResponse)
async def update_client(
    client_id: int,
    request: ClientUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    client_service = ClientService(db)
    return await client_service.update_client(client_id, request)


@router.post("/{client_id}/toggle-status", response_model=ClientResponse)
async def toggle_client_status(
    client_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    client_service = ClientService(db)
    return await client_service.toggle_client_status(client_id)


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_client(
    client_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Delete a client that has no projects"""

    client_service = ClientService(db)
    await client_service.delete_client(client_id)
