"""Pydantic models for the forge3d text-to-3D API."""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal

Provider = Literal["openrouter", "claude", "gemini"]


class GenerateRequest(BaseModel):
    message: str = Field("", description="Text description of the 3D object")
    provider: Optional[Provider] = None
    model: Optional[str] = None


class GenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    code: str
    raw_response: str = Field(..., alias="rawResponse")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


class ValidateRequest(BaseModel):
    code: str = Field(..., description="Code fragment (fenced or bare)")


class ValidateResponse(BaseModel):
    accepted: bool
    reason: Optional[str] = None
    rule: Optional[str] = None
    category: Optional[str] = None


class CodeRequest(BaseModel):
    code: str = Field(..., description="Code fragment defining create_object()")


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    provider: Optional[Provider] = None
    model: Optional[str] = None


class ChatMessageModel(BaseModel):
    role: str
    content: str
    code: Optional[str] = None
    object_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    timings: Optional[dict] = None
    created_at: str


class SceneCreated(BaseModel):
    id: str


class ObjectResponse(BaseModel):
    id: str
    kind: str
    name: str = ""
    children: int = 0
    node_count: int = 1
    meshes: int = 0


class CameraModel(BaseModel):
    position: list[float]
    target: list[float]
    fov: float


class SceneSummary(BaseModel):
    id: str
    objects: list[ObjectResponse] = []
    infrastructure: int = 0
    camera: CameraModel
    messages: int = 0


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: str
    version: str = ""
    providers: dict = {}
