"""Configuration for the forge3d text-to-3D server."""

import os
from dotenv import load_dotenv

load_dotenv()

# LLM API Keys
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")

# Value shipped in .env.example; treated the same as a missing key
PLACEHOLDER_API_KEY = "your_api_key_here"

# LLM Models
OPENROUTER_MODELS = {
    "gemini-flash": "google/gemini-3-flash-preview",
    "claude-haiku": "anthropic/claude-haiku-4.5",
}

CLAUDE_MODELS = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
}

GEMINI_MODELS = {
    "flash": "gemini-2.5-flash",
    "pro": "gemini-2.5-pro",
}

DEFAULT_MODELS = {
    "openrouter": "gemini-flash",
    "claude": "haiku",
    "gemini": "flash",
}

# OpenRouter relay
OPENROUTER_URL = os.getenv(
    "OPENROUTER_URL", "https://openrouter.ai/api/v1/chat/completions"
)
OPENROUTER_REFERER = os.getenv("OPENROUTER_REFERER", "http://localhost:5173")
OPENROUTER_TITLE = os.getenv("OPENROUTER_TITLE", "3D Chatbot Generator")
RELAY_TIMEOUT_SECONDS = float(os.getenv("RELAY_TIMEOUT_SECONDS", "60"))

# Default settings
DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "openrouter")
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.7"))
MAX_TOKENS = int(os.getenv("MAX_TOKENS", "2000"))

# Scene sessions
MAX_SCENES = int(os.getenv("MAX_SCENES", "128"))
SCENE_TTL_SECONDS = int(os.getenv("SCENE_TTL_SECONDS", "3600"))

# Sandbox execution budget, per fragment
EXECUTION_TIMEOUT_SECONDS = float(os.getenv("EXECUTION_TIMEOUT_SECONDS", "5"))
EXECUTION_MAX_STEPS = int(os.getenv("EXECUTION_MAX_STEPS", "2000000"))

# Export
EXPORT_FILENAME = os.getenv("EXPORT_FILENAME", "3d-forge-model")
SNAPSHOT_WIDTH = int(os.getenv("SNAPSHOT_WIDTH", "800"))
SNAPSHOT_HEIGHT = int(os.getenv("SNAPSHOT_HEIGHT", "600"))

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]
