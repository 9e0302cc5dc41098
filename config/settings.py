"""
Configuration Settings for the Engagement Pipeline

This module centralizes all configuration settings, including environment
variables, API keys, and the tunables of discovery, scoring and response
generation.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# API Keys and Authentication
GOOGLE_AI_API_KEY = os.getenv("GOOGLE_AI_API_KEY")

# AT Protocol (BlueSky) Authentication
AT_PROTOCOL_USERNAME = os.getenv("AT_PROTOCOL_USERNAME")
AT_PROTOCOL_PASSWORD = os.getenv("AT_PROTOCOL_PASSWORD")

# Database Settings
DB_SERVER = os.getenv("DB_SERVER", "")
DB_NAME = os.getenv("DB_NAME", "")
DB_USER = os.getenv("DB_USER", "")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_DRIVER = os.getenv("DB_DRIVER", "ODBC Driver 18 for SQL Server")

# Build connection string safely (validation happens in validate_settings())
DB_CONNECTION_STRING = (
    f"DRIVER={{{DB_DRIVER}}}; "
    f"SERVER={DB_SERVER}; "
    f"DATABASE={DB_NAME}; "
    f"UID={DB_USER}; "
    f"PWD={DB_PASSWORD}; "
    f"TrustServerCertificate=yes; MARS_Connection=yes;"
) if all([DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD]) else ""

# Knowledge Base (ChromaDB) Settings
CHROMA_HOST = os.getenv("CHROMA_HOST", "localhost")
CHROMA_PORT = _env_int("CHROMA_PORT", 8000)
CHROMA_COLLECTION = os.getenv("CHROMA_COLLECTION", "knowledge_base")
KNOWLEDGE_ENABLED = _env_bool("KNOWLEDGE_ENABLED", True)

# AI Model Settings
DEFAULT_AI_MODELS = [
    'gemini-2.5-flash',
    'gemini-2.0-flash',
    'gemini-2.5-flash-lite',
    'gemini-2.0-flash-lite',
]
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "models/text-embedding-004")

# =============================================================================
# Scoring Settings
# =============================================================================

RECENCY_WEIGHT = 0.7                 # Share of the total score from recency
IMPACT_WEIGHT = 0.3                  # Share of the total score from impact
RECENCY_DECAY_MINUTES = 30           # e^(-age/30): 37% left after 30 minutes
FOLLOWER_WEIGHT = 10                 # Multiplier for log10(followers)
ENGAGEMENT_WEIGHT = 3                # Multiplier for log10(likes+1) and log10(reposts+1)

# =============================================================================
# Discovery Settings
# =============================================================================

OPPORTUNITY_SCORE_THRESHOLD = 30     # Opportunities below this total are not stored
OPPORTUNITY_TTL_HOURS = 4            # Pending opportunities expire after this
DEFAULT_LOOKBACK_HOURS = 2           # "since" for a schedule that never ran
REPLIES_FETCH_LIMIT = 100            # Max replies fetched per run
SEARCH_FETCH_LIMIT = 50              # Max search results fetched per run
DEFAULT_SCHEDULE_MINUTES = 15        # Interval for newly configured schedules
EXPIRATION_SWEEP_MINUTES = 5         # How often the scheduler expires stale opportunities
OPPORTUNITY_PAGE_SIZE = 20           # Default page size for opportunity lists
OPPORTUNITY_MAX_PAGE_SIZE = 100      # Hard cap on page size

# =============================================================================
# Response Generation Settings
# =============================================================================

GENERATION_MAX_ATTEMPTS = 3          # Attempts per generation stage
GENERATION_BASE_DELAY_SECONDS = 1    # First backoff delay; doubles per retry
KNOWLEDGE_MAX_CHUNKS = 3             # Snippets requested from the knowledge index
KNOWLEDGE_TIMEOUT = 10               # Seconds before a knowledge query is abandoned
ANALYSIS_MAX_OUTPUT_TOKENS = 500
GENERATION_MAX_OUTPUT_TOKENS = 1000

# =============================================================================
# Social Media Platform Settings
# =============================================================================

BLUESKY_PLATFORM = "bluesky"
BLUESKY_MAX_POST_LENGTH = 300        # Bluesky's grapheme limit for a post
BLUESKY_WEB_URL = "https://bsky.app"
BLUESKY_NOTIFICATION_PAGE_SIZE = 100
DEFAULT_RATE_LIMIT_RETRY_SECONDS = 60


def validate_settings(require_database: bool = True):
    """Validate settings; see config.validators for the implementation."""
    from config.validators import validate_settings as _validate
    return _validate(require_database=require_database)


def get_config_summary() -> dict:
    """Return settings without secrets; see config.validators."""
    from config.validators import get_config_summary as _summary
    return _summary()
