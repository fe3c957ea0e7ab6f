from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings pulled from environment variables."""

    # Parser / Evaluator Limits
    max_parse_depth: int = Field(default=512, description="Maximum nesting depth accepted by the parser")
    max_eval_depth: int = Field(default=512, description="Maximum evaluator recursion depth")
    max_octaves: int = Field(default=16, description="Most fBm octaves a noise node may request")

    # Defaults
    default_seed: str = Field(default="A", description="Seed used by noise nodes without a Seed field")
    default_world_height: float = Field(default=320.0, description="World height used by Gradient's ToY default")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Logging format (json or console)")

    # Grid Evaluation Configuration
    max_grid_points: int = Field(default=262144, description="Max sample points accepted by one preview request")
    grid_workers: int = Field(default=1, description="Worker threads used by evaluate_grid")

    class Config:
        env_prefix = "DENSITY_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Instantiate singleton settings object
settings = Settings()
