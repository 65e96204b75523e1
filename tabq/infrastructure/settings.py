"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# Environment
ENV = os.getenv("TABQ_ENV", "development")

# API Configuration
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL = os.getenv("TABQ_LOG_LEVEL", "INFO")

# Address of the presentation page; lifecycle events for it are ignored
UI_PAGE_PREFIX = os.getenv("TABQ_UI_PAGE_PREFIX", "chrome-extension://")

# Remote classification provider
DEFAULT_PROVIDER = os.getenv("TABQ_PROVIDER", "claude")
DEFAULT_MODEL = os.getenv("TABQ_MODEL")
USE_REMOTE_CLASSIFIER = os.getenv("TABQ_USE_REMOTE", "true").lower() == "true"
USE_LEARNED_MODEL = os.getenv("TABQ_USE_LEARNED", "true").lower() == "true"

# Provider credentials
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
XAI_API_KEY = os.getenv("XAI_API_KEY")

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "4096"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.3"))

# Provider endpoints
PROVIDER_ENDPOINTS = {
    "claude": os.getenv("TABQ_CLAUDE_URL", "https://api.anthropic.com/v1/messages"),
    "openai": os.getenv("TABQ_OPENAI_URL", "https://api.openai.com/v1/chat/completions"),
    "deepseek": os.getenv("TABQ_DEEPSEEK_URL", "https://api.deepseek.com/v1/chat/completions"),
    "grok": os.getenv("TABQ_GROK_URL", "https://api.x.ai/v1/chat/completions"),
}

# Default model per provider
PROVIDER_MODELS = {
    "claude": "claude-3-5-sonnet-20241022",
    "openai": "gpt-4o-mini",
    "deepseek": "deepseek-chat",
    "grok": "grok-3-mini",
    "gemini": GEMINI_MODEL,
}
