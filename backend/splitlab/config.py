"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "SplitLab"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./splitlab.db"

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Experimentation
    default_confidence_level: float = 95.0
    # Both arms need this many visits before auto-stop may fire
    auto_stop_min_visits: int = 100
    # Recommendation thresholds (total visits across both arms)
    recommendation_min_sample: int = 1000
    recommendation_max_sample: int = 10000

    # Bayesian analysis
    bayesian_simulations: int = 10000
    bayesian_timeout_seconds: float = 5.0  # Max time for one Monte Carlo run

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
