"""forge3d text-to-3D FastAPI server."""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import scenekit

from forge3d.models import (
    GenerateRequest,
    GenerateResponse,
    ValidateRequest,
    ValidateResponse,
    CodeRequest,
    ChatRequest,
    ChatMessageModel,
    SceneCreated,
    SceneSummary,
    ObjectResponse,
    HealthResponse,
)
from forge3d.services import chat_service, export_service, llm_service, sandbox_service
from forge3d.services.export_service import ExportError
from forge3d.services.llm_service import RelayError
from forge3d.services.scene_service import SceneError, SceneRegistry, SceneSession
from forge3d.prompts.examples import EXAMPLES
from forge3d import config

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

registry = SceneRegistry()


class SceneNotFound(Exception):
    def __init__(self, scene_id: str):
        super().__init__(f"Unknown scene: {scene_id}")
        self.scene_id = scene_id


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan handler."""
    logger.info(f"Starting forge3d API (default provider: {config.DEFAULT_PROVIDER})...")
    yield
    await llm_service.close_clients()
    logger.info(f"Shutting down forge3d API ({registry.clear()} scene(s) dropped)...")


app = FastAPI(
    title="forge3d Text-to-3D",
    description="Turn text descriptions into 3D objects with an LLM and a sandboxed scene API",
    version=scenekit.version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error handlers ──────────────────────────────────────────────


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    body = {"error": exc.error}
    if exc.details is not None:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(SceneNotFound)
async def scene_not_found_handler(request: Request, exc: SceneNotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(SceneError)
async def scene_error_handler(request: Request, exc: SceneError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(ExportError)
async def export_error_handler(request: Request, exc: ExportError):
    status = 409 if str(exc) == export_service.EMPTY_SCENE_MESSAGE else 400
    return JSONResponse(status_code=status, content={"error": str(exc)})


def _session(scene_id: str) -> SceneSession:
    session = registry.get(scene_id)
    if session is None:
        raise SceneNotFound(scene_id)
    return session


def _summary(session: SceneSession) -> SceneSummary:
    return SceneSummary(
        id=session.id,
        messages=len(session.messages),
        **session.host.summary(),
    )


# ── REST Endpoints ──────────────────────────────────────────────


@app.get("/api/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=scenekit.version(),
        providers={p: llm_service.is_configured(p) for p in llm_service.PROVIDERS},
    )


@app.post("/api/generate", response_model=GenerateResponse, response_model_by_alias=True)
async def generate(req: GenerateRequest):
    if not req.message:
        return JSONResponse(status_code=400, content={"error": "Message is required"})

    code, raw, meta = await llm_service.generate_code(req.message, req.provider, req.model)
    logger.info(f"Generated {len(code)} chars of code via {meta['provider']}/{meta['model']}")
    return GenerateResponse(success=True, code=code, raw_response=raw)


@app.post("/api/validate", response_model=ValidateResponse)
async def validate(req: ValidateRequest):
    result = sandbox_service.validate_code(sandbox_service.extract_code(req.code))
    return ValidateResponse(
        accepted=result.accepted,
        reason=result.reason,
        rule=result.rule,
        category=result.category,
    )


@app.get("/api/examples")
async def examples():
    return [{"prompt": ex["prompt"], "code": ex["code"]} for ex in EXAMPLES]


# ── Scene sessions ──────────────────────────────────────────────


@app.post("/api/scenes", response_model=SceneCreated, status_code=201)
async def create_scene():
    session = registry.create()
    logger.info(f"Created scene {session.id} ({len(registry)} live)")
    return SceneCreated(id=session.id)


@app.get("/api/scenes/{scene_id}", response_model=SceneSummary)
async def get_scene(scene_id: str):
    return _summary(_session(scene_id))


@app.delete("/api/scenes/{scene_id}", status_code=204)
async def delete_scene(scene_id: str):
    if not registry.delete(scene_id):
        raise SceneNotFound(scene_id)
    return Response(status_code=204)


@app.post("/api/scenes/{scene_id}/chat", response_model=ChatMessageModel)
async def chat(scene_id: str, req: ChatRequest):
    session = _session(scene_id)
    reply = await chat_service.submit(session, req.message, req.provider, req.model)
    return ChatMessageModel(**reply.to_dict())


@app.get("/api/scenes/{scene_id}/messages", response_model=list[ChatMessageModel])
async def messages(scene_id: str):
    session = _session(scene_id)
    return [ChatMessageModel(**m.to_dict()) for m in session.messages]


@app.post("/api/scenes/{scene_id}/objects", response_model=ObjectResponse, status_code=201)
async def add_object(scene_id: str, req: CodeRequest):
    session = _session(scene_id)
    loop = asyncio.get_running_loop()
    reply = await loop.run_in_executor(None, chat_service.run_code, session, req.code)
    if not reply.ok:
        return JSONResponse(
            status_code=422,
            content={"error": reply.error, "kind": reply.error_kind},
        )
    return ObjectResponse(**session.host.describe(reply.object_id))


@app.delete("/api/scenes/{scene_id}/objects/{object_id}", status_code=204)
async def dispose_object(scene_id: str, object_id: str):
    _session(scene_id).host.dispose(object_id)
    return Response(status_code=204)


@app.delete("/api/scenes/{scene_id}/objects")
async def clear_objects(scene_id: str):
    removed = _session(scene_id).host.clear()
    return {"removed": removed}


@app.post("/api/scenes/{scene_id}/camera/reset")
async def reset_camera(scene_id: str):
    camera = _session(scene_id).host.reset_camera()
    return {
        "position": list(camera.position),
        "target": list(camera.target),
        "fov": camera.fov,
    }


@app.get("/api/scenes/{scene_id}/export/{fmt}")
async def export_scene(scene_id: str, fmt: str):
    session = _session(scene_id)
    data, media_type, filename = export_service.export(session.host, fmt)
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── WebSocket Endpoint ──────────────────────────────────────────


@app.websocket("/ws/scenes/{scene_id}")
async def ws_scene(ws: WebSocket, scene_id: str):
    await ws.accept()

    session = registry.get(scene_id)
    if session is None:
        await ws.send_json({"type": "error", "message": f"Unknown scene: {scene_id}"})
        await ws.close(code=4404)
        return

    try:
        while True:
            data = await ws.receive_json()
            message = (data.get("message") or "").strip()
            provider = data.get("provider")
            model = data.get("model")

            if not message:
                await ws.send_json({"type": "error", "message": "Message is required"})
                continue

            total_t0 = time.perf_counter()
            session.messages.append(chat_service.ChatMessage(role="user", content=message))

            # Phase 1: Stream LLM tokens
            await ws.send_json({"type": "status", "message": "Generating code..."})

            accumulated = ""
            try:
                async for token in llm_service.stream(message, provider, model):
                    accumulated += token
                    await ws.send_json({"type": "tokens", "content": token})
            except RelayError as e:
                logger.error(f"Scene {session.id}: stream failed ({e.status_code}): {e}")
                session.messages.append(chat_service.ChatMessage(
                    role="assistant",
                    content=chat_service.FAILURE_REPLY,
                    error=str(e),
                    error_kind="upstream",
                ))
                await ws.send_json({"type": "error", "kind": "upstream", "message": str(e)})
                continue

            # Phase 2: Execute and adopt
            code = sandbox_service.extract_code(accumulated)
            await ws.send_json({"type": "code", "code": code})
            await ws.send_json({"type": "status", "message": "Building object..."})

            loop = asyncio.get_running_loop()
            reply = await loop.run_in_executor(None, chat_service.run_code, session, code)
            if not reply.ok:
                await ws.send_json({
                    "type": "error",
                    "kind": reply.error_kind,
                    "message": reply.error,
                })
                continue

            await ws.send_json({
                "type": "object",
                "object": session.host.describe(reply.object_id),
                "message": reply.content,
            })
            await ws.send_json({
                "type": "done",
                "total_time_ms": round((time.perf_counter() - total_t0) * 1000, 2),
            })

    except WebSocketDisconnect:
        logger.info(f"Scene {scene_id}: websocket closed")


# ── Main ────────────────────────────────────────────────────────


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "forge3d.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
    )
