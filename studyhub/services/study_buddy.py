import logging
from typing import AsyncIterator, Optional

from google import genai

from studyhub.core.config import GEMINI_MODEL
from studyhub.core.errors import GenerationError

logger = logging.getLogger(__name__)

NOT_IN_NOTES_PHRASE = "Based on the provided notes, I can't find information on that topic."


def build_system_instruction(notes: str) -> str:
    return f"""You are an expert AI Study Buddy. The user has provided the following notes to study from:
---
{notes or 'No notes provided yet.'}
---
Your knowledge is strictly limited to the text provided above. You CANNOT use any external information. When responding to the user:
1. First, determine if the user's question can be answered using ONLY the provided notes.
2. If the answer is in the notes, provide a comprehensive answer based exclusively on that text.
3. If the answer is NOT in the notes, you MUST begin your response with the exact phrase: "{NOT_IN_NOTES_PHRASE}" After this phrase, you may optionally and briefly mention what the notes DO cover. Do not try to answer the original question."""


class StudyBuddySession:
    """A notes-grounded chat owned by one room client.

    The chat history lives in the underlying SDK chat object, so a session is
    only valid for the notes it was built with; owners build a new one when
    the shared notes change.
    """

    def __init__(self, client: genai.Client, notes: str, model: str = GEMINI_MODEL):
        self.notes = notes
        self._chat = client.aio.chats.create(
            model=model,
            config={"system_instruction": build_system_instruction(notes)},
        )

    def matches(self, notes: str) -> bool:
        return self.notes == notes

    async def stream_reply(self, message: str) -> AsyncIterator[str]:
        """Yield the reply accumulated so far after every streamed chunk"""
        reply = ""
        try:
            stream = await self._chat.send_message_stream(message)
            async for chunk in stream:
                reply += chunk.text or ""
                yield reply
        except Exception as e:
            logger.error(f"Study buddy stream failed: {e}", exc_info=True)
            raise GenerationError("Study buddy reply failed", cause=e) from e


def refresh_session(
    session: Optional[StudyBuddySession], client: genai.Client, notes: str
) -> StudyBuddySession:
    """Reuse ``session`` while the notes are unchanged, otherwise start a new one"""
    if session is not None and session.matches(notes):
        return session
    return StudyBuddySession(client, notes)
