from enum import Enum
from pydantic import BaseModel, ConfigDict, Field

class Author(str, Enum):
    user = "user"
    agent = "agent"
    system = "system"

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(min_length=1)
    document_id: str = Field(alias="documentId", min_length=1)
    thread_id: str = Field(alias="threadId", min_length=1)

class ThreadCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", min_length=1)
    title: str = "New thread"

class ChatThread(BaseModel):
    thread_id: str
    owner_id: str
    doc_id: str
    title: str
    created_at: int                  # epoch millis

class ChatTurn(BaseModel):
    thread_id: str
    author: Author
    text: str
    created_at: int                  # epoch millis
