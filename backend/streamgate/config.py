"""
Configuration settings for the StreamGate backend.
Uses pydantic-settings for environment variable support.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Dict, List
import logging
import secrets
import os

logger = logging.getLogger(__name__)


def get_or_create_secret_key():
    """Get secret key from file or generate a new one."""
    secret_file = ".secret_key"
    if os.path.exists(secret_file):
        try:
            with open(secret_file, "r") as f:
                return f.read().strip()
        except OSError as e:
            logger.warning("Could not read %s: %s", secret_file, e)

    key = secrets.token_urlsafe(32)
    try:
        with open(secret_file, "w") as f:
            f.write(key)
    except OSError:
        # Read-only filesystem, the key only lives for this process
        logger.warning("Could not persist secret key, using an ephemeral one")

    return key


DEFAULT_MASTER_PROMPT = (
    "You are a helpful assistant. Answer clearly and accurately. "
    "When you reason step by step, wrap the reasoning in <think></think> tags."
)

ARTIFACT_INSTRUCTIONS = """

## ARTIFACT GENERATION GUIDELINES

You can generate artifacts for substantial, self-contained content. Artifacts appear in a separate panel alongside the conversation.

Create artifacts for content that is substantial (more than 15 lines of code or 500 characters of prose), self-contained and likely to be modified. Do NOT create artifacts for short snippets or conversational answers.

Supported types: html, code (with language), react (language="tsx"), vue, svg, markdown, mermaid, json, csv, presentation.

Syntax:
<artifact type="TYPE" title="DESCRIPTIVE_TITLE" language="LANGUAGE">
CONTENT HERE
</artifact>

You may also call the create_artifact tool with the same fields.
"""

FORCE_ARTIFACT_INSTRUCTIONS = (
    "\n\nMANDATORY: Your response for this turn MUST be delivered as an artifact, "
    "either with <artifact> tags or with the create_artifact tool."
)

PRO_SEARCH_INSTRUCTIONS = (
    "\n\nPRO SEARCH MODE: Before answering, use the search_web tool to gather current information. "
    "Cite sources inline as [1], [2], ... using the numbering of the search results."
)


class Settings(BaseSettings):
    """Application configuration settings."""

    # Application
    APP_NAME: str = "StreamGate"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    # Resolved relative to this file (backend/streamgate/config.py -> backend/streamgate.db)
    _BASE_DIR: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    DATABASE_URL: str = f"sqlite+aiosqlite:///{os.path.join(_BASE_DIR, 'streamgate.db')}"

    # JWT Authentication (tokens are issued elsewhere, only decoded here)
    SECRET_KEY: str = Field(default_factory=get_or_create_secret_key)
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Model provider
    DEFAULT_API_BASE: str = "https://api.openai.com/v1"
    DEFAULT_API_KEY: str = "not-needed"
    DEFAULT_MODEL_ID: str = "gpt-4o-mini"
    THINKING_MODEL_IDS: List[str] = ["o3-mini", "deepseek-reasoner"]
    PRO_SEARCH_MODEL_ID: str = ""
    PRO_SEARCH_MODEL_NAME: str = ""
    TEMPERATURE: float = 0.7
    MAX_TOKENS: int = 4096
    MODEL_TIMEOUT_SECONDS: float = 120.0

    # Generation engine
    CONTEXT_WINDOW_SIZE: int = 5
    MAX_TOOL_DEPTH: int = 1
    ARTIFACT_CHUNK_SIZE: int = 100
    ARTIFACT_CHUNK_DELAY: float = 0.005

    # Web search (Serper-compatible)
    SEARCH_API_URL: str = "https://google.serper.dev/search"
    SEARCH_API_KEY: str = ""
    SEARCH_MIN_RESULTS: int = 5
    SEARCH_MAX_RESULTS: int = 100
    SEARCH_TIMEOUT_SECONDS: float = 15.0

    # Prompts
    MASTER_SYSTEM_PROMPT: str = DEFAULT_MASTER_PROMPT
    TIER_INSTRUCTIONS: Dict[str, str] = {}

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
