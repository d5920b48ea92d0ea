import os
import logging
from pathlib import Path
from typing import List
from pydantic import BaseModel

DEFAULT_KB_PATH = str(Path(__file__).parent / "data" / "visa-kb.json")

class Settings(BaseModel):
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_api_base: str = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
    kb_path: str = os.getenv("KB_PATH", DEFAULT_KB_PATH)
    embedding_backend: str = os.getenv("EMBEDDING_BACKEND", "openai")
    embedding_model: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    local_embedding_model: str = os.getenv("LOCAL_EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    model: str = os.getenv("MODEL", "gpt-4.1-mini")
    top_k: int = int(os.getenv("TOP_K", "3"))
    wait_for_embeddings: bool = os.getenv("WAIT_FOR_EMBEDDINGS", "0").lower() in ("1", "true", "yes")
    cors_origins: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3001"))

settings = Settings()

def configure_logging(level: str = settings.log_level):
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
