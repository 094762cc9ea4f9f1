"""Configuration settings for the cortex research agent."""

import logging
import os
from dotenv import load_dotenv

load_dotenv()

# Logging setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%H:%M:%S",
)

# OpenRouter
# Available models via OpenRouter:
# - anthropic/claude-3-5-sonnet (balanced)
# - upstage/solar-pro-3:free (free tier)
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_DEFAULT_MODEL = os.getenv("OPENROUTER_DEFAULT_MODEL", "arcee-ai/trinity-mini:free")

# Anthropic (direct API)
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_DEFAULT_MODEL = os.getenv("ANTHROPIC_DEFAULT_MODEL", "claude-3-5-haiku-20241022")

# Tavily web search
TAVILY_API_KEY = os.getenv("TAVILY_API_KEY")

# Convex (optional realtime event sink / document store)
CONVEX_URL = os.getenv("CONVEX_URL", "")

# Local document storage
DATA_DIR = os.getenv("CORTEX_DATA_DIR", ".cortex")

# Retry settings
MAX_RETRIES = 3
RETRY_BACKOFF_FACTOR = 2.0
CALL_TIMEOUT_SECONDS = float(os.getenv("CORTEX_CALL_TIMEOUT", "60.0"))
