from functools import lru_cache
from pathlib import Path
from typing import Optional, Set

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG,
    DATA_DIR, DB_FILENAME, PERSISTENCE_BACKEND, CHECKLIST_ENFORCED).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Treasury Expense Service"
    debug: bool = True
    version: str = "0.1.0"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "treasury.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided
    evidence_dir: Optional[Path] = None  # derived if not provided
    # Allowed: 'sqlite' (file backed DAL), 'memory' (process local, tests/demos)
    persistence_backend: str = "sqlite"

    # Workflow
    checklist_enforced: bool = False
    reconciliation_retries: int = 2

    # Cost center budget thresholds (percent used)
    budget_warn_pct: int = 80
    budget_danger_pct: int = 90

    # Evidence uploads
    max_upload_bytes: int = 10 * 1024 * 1024
    allowed_upload_types: Set[str] = {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "application/pdf",
    }

    default_page_size: int = 50

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        if self.evidence_dir is None:
            self.evidence_dir = self.data_dir / "evidence"
        allowed = {"sqlite", "memory"}
        if self.persistence_backend not in allowed:
            raise ValueError(
                f"Unsupported persistence_backend '{self.persistence_backend}'. Allowed: {allowed}"
            )
        if not (1 <= self.budget_warn_pct < self.budget_danger_pct <= 100):
            raise ValueError("Invalid budget thresholds: require 1 <= warn < danger <= 100")
        if self.reconciliation_retries < 0:
            raise ValueError("reconciliation_retries cannot be negative")
        # Ensure persistence directory exists
        if self.persistence_backend == "sqlite":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
