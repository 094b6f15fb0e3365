from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.database import get_session
from listings.dependencies.auth import get_current_agent
from listings.models.user import User
from listings.schemas.common import ApiResponse
from listings.schemas.property import PropertyResponse
from listings.services import agents as agent_service

logger = get_logger()
router = APIRouter(tags=["agents"])


@router.get("/api/agents", response_model=ApiResponse[List[dict]])
async def list_agents(session: AsyncSession = Depends(get_session)):
    agents = await agent_service.list_agents(session)
    return ApiResponse(data=agents)


@router.get("/api/agents/{agent_id}")
async def get_agent(agent_id: str, session: AsyncSession = Depends(get_session)):
    agent, properties = await agent_service.get_agent_detail(session, agent_id)
    listings = [PropertyResponse.model_validate(p).model_dump(mode="json", by_alias=True) for p in properties]
    return ApiResponse(data={"agent": agent, "properties": listings})


@router.get("/api/agent/total-views", response_model=ApiResponse[dict])
async def total_views(
    agent_id: Optional[str] = Query(None, alias="agentId"),
    user: User = Depends(get_current_agent),
    session: AsyncSession = Depends(get_session),
):
    totals = await agent_service.get_total_views(session, user, agent_id)
    logger.info("Fetched agent total views", agent_id=totals["agent_id"], total=totals["total_views"])
    return ApiResponse(data=totals)
