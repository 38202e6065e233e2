from typing import Optional, List, Literal
from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    name: str
    url: str
    source: Literal["manual"] = "manual"
    userId: str


class FileEntry(BaseModel):
    name: str
    url: str


class ListResponse(BaseModel):
    files: List[FileEntry]


class DeleteResponse(BaseModel):
    success: bool = True


class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    imageBufferBase64: Optional[str] = Field(None, description="Image bytes, base64 encoded")


class GenerateResponse(BaseModel):
    name: str
    url: str
    caption: str
    source: Literal["gemini"] = "gemini"
    userId: str


class ErrorResponse(BaseModel):
    error: str
    status: Optional[str] = None
