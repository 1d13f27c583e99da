"""VibeCast - shared state sync for the party visualizer surfaces."""

from pathlib import Path

from dotenv import load_dotenv

# Load .env from the repository root (one level up from the package)
_env_path = Path(__file__).parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

__version__ = "1.0.0"
