from fastapi import APIRouter, Depends, Request

from .. import schemas
from ..ai import ChatService, get_chat_service
from ..audit import log_api_usage
from ..auth import Identity, get_identity
from ..limits import chat_limit

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("", response_model=schemas.Envelope[schemas.ChatReply])
@chat_limit
async def chat(
    payload: schemas.ChatRequest,
    request: Request,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service),
):
    messages = payload.conversation()
    reply = await service.complete(messages)
    log_api_usage("chat", identity.id, messages=len(messages), model=reply.model)
    return {"success": True, "data": reply}


@router.get("/status", response_model=schemas.Envelope[schemas.ChatStatus])
def chat_status(
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service),
):
    return {"success": True, "data": service.status()}
