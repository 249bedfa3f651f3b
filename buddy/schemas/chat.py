"""Chat schemas."""

from pydantic import BaseModel


class ChatRequest(BaseModel):
    """A single user turn. Blank messages are rejected by the relay."""

    message: str
