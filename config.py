import os
from fractions import Fraction

from dotenv import load_dotenv

load_dotenv()

# Base directory
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# Paths
STATIC_DIR = os.path.join(BASE_DIR, "static")
LOG_FILE = os.path.join(BASE_DIR, "launch.log")

# Server
DEFAULT_HOST = os.getenv("HOST", "127.0.0.1")
DEFAULT_PORT = int(os.getenv("PORT", "8000"))

# Exam rules
EXAM_DURATION_SECONDS = int(os.getenv("EXAM_DURATION_SECONDS", "7200"))  # 2 hours
NEGATIVE_MARK = Fraction(os.getenv("NEGATIVE_MARK", "1/3"))
DEFAULT_CONFIDENCE = 3
TIMER_WARNING_SECONDS = 900     # countdown turns red below 15 minutes
TICK_INTERVAL_SECONDS = 1.0
DEFAULT_QUESTION_LIMIT = 100

# Persistence ("memory" or "supabase")
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory")
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
MODEL_NAME = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
TRANSCRIBE_MODEL = "whisper-1"

# Spaced repetition (days until next review, indexed by review count)
FLASHCARD_INTERVALS_DAYS = (1, 3, 7, 14, 30)

# PDF import
MAX_PDF_PAGES = 200
MAX_PDF_SIZE = 50 * 1024 * 1024  # 50 MB
MIN_CHARS_PER_PAGE = 100        # below this a page is treated as scanned
TEXT_PAGES_PER_GROUP = 5

# Identity fallback for single-user desktop runs (no auth header sent)
LOCAL_USER_ID = os.getenv("LOCAL_USER_ID", "")
