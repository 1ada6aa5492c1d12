"""Chat Service - one submission from prompt to adopted scene node."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

from forge3d.services import llm_service, sandbox_service
from forge3d.services.llm_service import RelayError
from forge3d.services.sandbox_service import SandboxError
from forge3d.services.scene_service import SceneError, SceneSession

logger = logging.getLogger(__name__)

SUCCESS_REPLY = (
    "I've created your 3D model! You can rotate it by dragging, zoom with scroll, "
    "and download it using the toolbar."
)
FAILURE_REPLY = "I encountered an issue creating that object."


@dataclass
class ChatMessage:
    role: str
    content: str
    code: Optional[str] = None
    object_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    timings: Optional[dict] = None
    created_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return asdict(self)


def _failure(code: Optional[str], error: str, kind: str, timings: Optional[dict] = None) -> ChatMessage:
    return ChatMessage(
        role="assistant",
        content=FAILURE_REPLY,
        code=code,
        error=error,
        error_kind=kind,
        timings=timings,
    )


def _execute_and_adopt(session: SceneSession, code: str, timings: dict) -> ChatMessage:
    t0 = time.perf_counter()
    try:
        node = sandbox_service.execute_code(code)
        object_id = session.host.adopt(node)
    except SandboxError as e:
        logger.warning(f"Scene {session.id}: {e.kind} failure: {e}")
        return _failure(code, str(e), e.kind, timings)
    except SceneError as e:
        logger.warning(f"Scene {session.id}: adopt failed: {e}")
        return _failure(code, str(e), "scene", timings)
    timings["execute_ms"] = round((time.perf_counter() - t0) * 1000, 2)

    return ChatMessage(
        role="assistant",
        content=SUCCESS_REPLY,
        code=code,
        object_id=object_id,
        timings=timings,
    )


async def submit(
    session: SceneSession,
    message: str,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> ChatMessage:
    """Relay, extract, execute and adopt. Always returns the assistant reply."""
    session.messages.append(ChatMessage(role="user", content=message))

    try:
        code, _raw, meta = await llm_service.generate_code(message, provider, model)
    except RelayError as e:
        logger.error(f"Scene {session.id}: relay failed ({e.status_code}): {e}")
        reply = _failure(None, e.error if e.details is None else f"{e.error}: {e.details}", "upstream")
        session.messages.append(reply)
        return reply

    # execution and adoption run on the default executor, off the event loop
    loop = asyncio.get_running_loop()
    reply = await loop.run_in_executor(None, _execute_and_adopt, session, code, dict(meta))
    session.messages.append(reply)
    return reply


def run_code(session: SceneSession, code: str) -> ChatMessage:
    """Execute already-extracted code against a session. No relay."""
    reply = _execute_and_adopt(session, sandbox_service.extract_code(code), {})
    session.messages.append(reply)
    return reply
