from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
import logging

from studyhub.api.dependencies import (
    get_resource_service,
    get_room_synchronizer,
    get_text_generator,
)
from studyhub.api.http_errors import to_http_exception
from studyhub.core.errors import GenerationError, ResourceTooLargeError
from studyhub.models.room import (
    ChatMessageRequest,
    CreateRoomRequest,
    GenerateQuizRequest,
    QuizPayload,
    RoomUser,
    SubmitAnswerRequest,
    TextBlobRequest,
    TimerActionRequest,
)
from studyhub.services.resources import ResourceService
from studyhub.services.room_sync import RoomSynchronizer
from studyhub.services.text_generation import TextGenerator

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


# --- Rooms ---

@router.post("", summary="Create a study room")
async def create_room(request: CreateRoomRequest, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        if not request.name or not request.name.strip():
            raise HTTPException(status_code=400, detail="Room name cannot be empty")
        if request.maxUsers < 1:
            raise HTTPException(status_code=400, detail="maxUsers must be at least 1")

        room = await sync.create_room(
            name=request.name.strip(),
            course_id=request.courseId,
            max_users=request.maxUsers,
            creator=request.creator,
            technique=request.technique,
            topic=request.topic,
            university=request.university,
        )
        return {
            "success": True,
            "room": room.model_dump(),
            "message": f"Room created successfully. Join code: {room.id}",
        }
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "creating room")


@router.get("", summary="List study rooms")
async def list_rooms(sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        rooms = await sync.list_rooms()
        return {
            "success": True,
            "rooms": [room.model_dump() for room in rooms],
            "count": len(rooms),
        }
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "listing rooms")


@router.get("/{room_id}", summary="Get a study room")
async def get_room(room_id: str, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        room = await sync.require_room(room_id)
        return {"success": True, "room": room.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "fetching room")


@router.post("/{room_id}/join", summary="Join a study room")
async def join_room(room_id: str, user: RoomUser, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        room = await sync.require_room(room_id)
        already_member = any(member.email == user.email for member in room.users)
        # maxUsers is advisory: joining past it is allowed but reported
        is_full = not already_member and len(room.users) >= room.maxUsers
        if is_full:
            logger.warning(f"Room {room_id} is over capacity ({len(room.users) + 1}/{room.maxUsers})")

        await sync.join(room_id, user)
        return {"success": True, "roomId": room_id, "isFull": is_full}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "joining room")


@router.post("/{room_id}/leave", summary="Leave a study room")
async def leave_room(room_id: str, user: RoomUser, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        await sync.require_room(room_id)
        await sync.leave(room_id, user)
        return {"success": True, "roomId": room_id}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "leaving room")


# --- Pomodoro ---

@router.post("/{room_id}/timer/{action}", summary="Start, stop or reset the room timer")
async def timer_action(
    room_id: str,
    action: str,
    request: TimerActionRequest,
    sync: RoomSynchronizer = Depends(get_room_synchronizer),
):
    actions = {
        "start": sync.start_timer,
        "stop": sync.stop_timer,
        "reset": sync.reset_timer,
    }
    try:
        if action not in actions:
            raise HTTPException(status_code=400, detail=f"Unknown timer action: {action}")

        state = await actions[action](room_id, request.email)
        return {"success": True, "pomodoro": state.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, f"running timer action {action}")


# --- Shared quiz ---

@router.get("/{room_id}/quiz", summary="Get the active quiz")
async def get_quiz(room_id: str, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        await sync.require_room(room_id)
        quiz = await sync.get_quiz(room_id)
        return {"success": True, "quiz": quiz.model_dump() if quiz else None}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "fetching quiz")


@router.post("/{room_id}/quiz", summary="Post a quiz to the room")
async def post_quiz(room_id: str, payload: QuizPayload, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        if len(payload.options) < 2:
            raise HTTPException(status_code=400, detail="A quiz needs at least two options")
        if not 0 <= payload.correctOptionIndex < len(payload.options):
            raise HTTPException(status_code=400, detail="correctOptionIndex is out of range")

        await sync.require_room(room_id)
        quiz = await sync.post_quiz(room_id, payload)
        return {"success": True, "quiz": quiz.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "posting quiz")


@router.post("/{room_id}/quiz/generate", summary="Generate a quiz from the room's study notes")
async def generate_quiz(
    room_id: str,
    request: GenerateQuizRequest,
    sync: RoomSynchronizer = Depends(get_room_synchronizer),
    generator: Optional[TextGenerator] = Depends(get_text_generator),
):
    try:
        if generator is None:
            raise GenerationError("Quiz generation is not configured")

        await sync.require_room(room_id)
        quiz = await sync.generate_quiz(room_id, generator, request.requestedBy)
        return {"success": True, "quiz": quiz.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "generating quiz")


@router.post("/{room_id}/quiz/answers", summary="Submit an answer to the active quiz")
async def submit_answer(room_id: str, request: SubmitAnswerRequest, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        quiz = await sync.get_quiz(room_id)
        if quiz is None:
            raise HTTPException(status_code=404, detail="No active quiz in this room")
        if not 0 <= request.answerIndex < len(quiz.options):
            raise HTTPException(status_code=400, detail="answerIndex is out of range")

        answer = await sync.submit_answer(room_id, request.userId, request.displayName, request.answerIndex)
        return {"success": True, "answer": answer.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "submitting answer")


@router.delete("/{room_id}/quiz", summary="Clear the active quiz")
async def clear_quiz(room_id: str, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        await sync.clear_quiz(room_id)
        return {"success": True, "message": "Quiz cleared"}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "clearing quiz")


# --- Chat ---

@router.get("/{room_id}/messages", summary="Get the room chat log")
async def get_messages(room_id: str, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        messages = await sync.get_messages(room_id)
        return {
            "success": True,
            "messages": [message.model_dump() for message in messages],
            "count": len(messages),
        }
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "fetching messages")


@router.post("/{room_id}/messages", summary="Post a chat message")
async def post_message(room_id: str, request: ChatMessageRequest, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        if not request.text or not request.text.strip():
            raise HTTPException(status_code=400, detail="Message cannot be empty")

        await sync.require_room(room_id)
        message = await sync.post_message(room_id, request.text, request.user)
        return {"success": True, "message": message.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "posting message")


# --- Notes ---

@router.put("/{room_id}/context", summary="Replace the shared study notes used for AI features")
async def set_ai_context(room_id: str, request: TextBlobRequest, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        await sync.require_room(room_id)
        await sync.set_ai_context(room_id, request.content)
        return {"success": True, "length": len(request.content)}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "saving study notes")


@router.put("/{room_id}/notes", summary="Replace the shared user notes")
async def set_user_notes(room_id: str, request: TextBlobRequest, sync: RoomSynchronizer = Depends(get_room_synchronizer)):
    try:
        await sync.require_room(room_id)
        await sync.set_user_notes(room_id, request.content)
        return {"success": True, "length": len(request.content)}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "saving notes")


# --- Resources ---

@router.get("/{room_id}/resources", summary="List files shared in the room")
async def list_resources(room_id: str, resources: ResourceService = Depends(get_resource_service)):
    try:
        items = await resources.list_resources(room_id)
        return {
            "success": True,
            "resources": [item.model_dump() for item in items],
            "count": len(items),
        }
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "listing resources")


@router.post("/{room_id}/resources", summary="Upload a file to the room")
async def upload_resource(
    room_id: str,
    file: UploadFile = File(...),
    uploader: Optional[str] = Form(None),
    sync: RoomSynchronizer = Depends(get_room_synchronizer),
    resources: ResourceService = Depends(get_resource_service),
):
    try:
        await sync.require_room(room_id)
        if file.size is not None and file.size > resources.max_bytes:
            raise ResourceTooLargeError(file.size, resources.max_bytes)
        # One byte past the limit is enough to reject the upload
        data = await file.read(resources.max_bytes + 1)
        resource = await resources.upload_resource(room_id, file.filename or "", data, uploader)
        return {"success": True, "resource": resource.model_dump()}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "uploading resource")


@router.delete("/{room_id}/resources/{name}", summary="Delete a shared file")
async def delete_resource(room_id: str, name: str, resources: ResourceService = Depends(get_resource_service)):
    try:
        await resources.delete_resource(room_id, name)
        return {"success": True, "message": f"Deleted {name}"}
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_exception(e, "deleting resource")
