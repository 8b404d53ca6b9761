from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
import json
import logging

from studyhub.api.dependencies import (
    get_genai_client,
    get_resource_service,
    get_room_synchronizer,
    get_text_generator,
)
from studyhub.core.errors import RoomNotFoundError, StudyHubError
from studyhub.models.room import RoomUser
from studyhub.services.connection_manager import manager
from studyhub.services.resources import ResourceService
from studyhub.services.room_client import RoomClient
from studyhub.services.room_sync import RoomSynchronizer
from studyhub.services.text_generation import TextGenerator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/api/ws/rooms/{room_id}")
async def room_websocket(
    websocket: WebSocket,
    room_id: str,
    email: str = Query(...),
    display_name: str = Query(...),
    sync: RoomSynchronizer = Depends(get_room_synchronizer),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
    genai_client=Depends(get_genai_client),
    resource_service: ResourceService = Depends(get_resource_service),
):
    """
    WebSocket endpoint for a participant in a study room.
    Room state is pushed from document subscriptions; this socket only carries
    that participant's view and their commands.
    """
    # Accept connection first so errors can be reported over it
    try:
        await websocket.accept()
        logger.info(f"WebSocket accepted for room={room_id}, user={email}")
    except Exception as e:
        logger.error(f"Failed to accept WebSocket: {e}")
        return

    user = RoomUser(email=email, displayName=display_name)

    async def emit(event: str, payload) -> None:
        await manager.send_personal_message({"type": event, "payload": payload}, websocket)

    client = RoomClient(
        sync,
        room_id,
        user,
        emit,
        generator=generator,
        genai_client=genai_client,
        resource_service=resource_service,
    )

    try:
        await client.connect()
    except RoomNotFoundError as e:
        await emit("error", {"message": str(e)})
        await websocket.close(code=4404)
        return
    except Exception as e:
        logger.error(f"Failed to connect {email} to room {room_id}: {e}", exc_info=True)
        await emit("error", {"message": "Could not join the room"})
        await websocket.close(code=1011)
        return

    await manager.connect(websocket, room_id, email)

    try:
        async for message_data in websocket.iter_text():
            message_type = None
            try:
                message = json.loads(message_data)
                message_type = message.get("type")
                payload = message.get("payload") or {}
                logger.debug(f"Received message type={message_type} from user={email}")

                await handle_message(client, message_type, payload)

            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON: {e}")
                await emit("error", {"message": "Invalid JSON"})
            except (StudyHubError, ValueError) as e:
                logger.info(f"Rejected {message_type} from {email}: {e}")
                await emit("error", {"type": message_type, "message": str(e)})
            except Exception as e:
                logger.error(f"Error processing message: {e}", exc_info=True)
                await emit("error", {"type": message_type, "message": "Unexpected server error"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user={email}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(websocket, room_id, email)
        try:
            await client.close()
        except Exception as e:
            logger.error(f"Error leaving room {room_id} for {email}: {e}", exc_info=True)


def _require_text(payload: dict, field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{field}' must be a non-empty string")
    return value


async def handle_message(client: RoomClient, message_type: str, payload: dict) -> None:
    if message_type == "start_timer":
        await client.start_timer()

    elif message_type == "stop_timer":
        await client.stop_timer()

    elif message_type == "reset_timer":
        await client.reset_timer()

    elif message_type == "generate_quiz":
        await client.generate_quiz()

    elif message_type == "submit_answer":
        answer_index = payload.get("answerIndex")
        if not isinstance(answer_index, int):
            raise ValueError("'answerIndex' must be an integer")
        accepted = await client.submit_answer(answer_index)
        if not accepted:
            await client.emit("error", {"type": message_type, "message": "No active quiz or already answered"})

    elif message_type == "clear_quiz":
        await client.clear_quiz()

    elif message_type == "chat":
        await client.send_chat(_require_text(payload, "text"))

    elif message_type == "save_notes":
        content = payload.get("content")
        if not isinstance(content, str):
            raise ValueError("'content' must be a string")
        await client.save_notes(content)

    elif message_type == "ask_buddy":
        await client.ask_buddy(_require_text(payload, "message"))

    elif message_type == "reaction":
        # Ephemeral: fanned out to everyone else in the room, never stored
        await manager.broadcast_except({
            "type": "reaction",
            "payload": {
                "emoji": _require_text(payload, "emoji"),
                "user": client.user.model_dump(),
            },
        }, client.room_id, client.user.email)

    else:
        logger.warning(f"Unknown message type: {message_type}")
        raise ValueError(f"Unknown message type: {message_type}")
