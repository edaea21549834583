import os

from dotenv import load_dotenv

DEFAULT_ENV_FILE = os.path.join(os.path.dirname(__file__), ".env")


def load_env_file(path: str = "") -> bool:
    """Load settings from a .env file without overriding the real environment.

    TABSPLIT_ENV_FILE points at another file; see backend/.env.example.
    """
    path = path or os.getenv("TABSPLIT_ENV_FILE", DEFAULT_ENV_FILE)
    if not os.path.exists(path):
        return False
    return load_dotenv(path, override=False)


load_env_file()

APP_NAME = "tabsplit-backend"
APP_VERSION = "0.1.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_TIMEOUT_SEC = float(os.getenv("GEMINI_TIMEOUT_SEC", "30"))
MAX_IMAGE_DIM = int(os.getenv("MAX_IMAGE_DIM", "1600"))
JPEG_QUALITY = 80

SHARE_BASE_URL = os.getenv("SHARE_BASE_URL", "http://localhost:8000/")
# Empty means unsigned tokens.
SHARE_LINK_SECRET = os.getenv("SHARE_LINK_SECRET", "")
