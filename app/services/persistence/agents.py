"""Agent persistence service."""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.db.models import Agent


class AgentPersistenceService:
    """Service for agent lookups and creation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_available_agent(self, agent_type: str = "ai") -> Optional[Agent]:
        """First-fit selection of an available agent of the given type."""
        result = await self.db.execute(
            select(Agent)
            .where(Agent.status == "available")
            .where(Agent.type == agent_type)
            .order_by(Agent.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_agent(
        self,
        name: str,
        agent_type: str = "ai",
        status: str = "available",
        voice_id: Optional[str] = None,
        specialization: Optional[str] = None,
        prompt_template: Optional[str] = None,
    ) -> Agent:
        """Create a new agent."""
        agent = Agent(
            name=name,
            type=agent_type,
            status=status,
            voice_id=voice_id,
            specialization=specialization,
            prompt_template=prompt_template,
        )
        self.db.add(agent)
        await self.db.commit()
        await self.db.refresh(agent)
        return agent
