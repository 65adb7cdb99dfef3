from fastapi import APIRouter, Depends, Request
from openai import AsyncOpenAI

from ..models.base import ValuationProvider
from ..models.openai_model import get_openai_client
from ..schemas import AgentMessageRequest, AgentMessageResponse
from ..services.agent_service import AgentService
from .valuation import get_provider

router = APIRouter()

def agent_dep(
    request: Request,
    client: AsyncOpenAI = Depends(get_openai_client),
    provider: ValuationProvider = Depends(get_provider),
) -> AgentService:
    # Session store lives on the app so it can be swapped per deployment (or per test)
    return AgentService(client, provider, request.app.state.sessions)

@router.post("/agent", response_model=AgentMessageResponse)
async def post_agent_message(body: AgentMessageRequest, agent: AgentService = Depends(agent_dep)):
    session_id, reply = await agent.handle_message(body.message, session_id=body.session_id)
    return AgentMessageResponse(session_id=session_id, message=reply)
