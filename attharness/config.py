"""
Harness configuration management
"""
from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Conformance harness settings"""

    # Tracing
    verbose: bool = False  # hexdump every PDU crossing the transport

    # Protocol limits
    default_mtu: int = 512
    max_pdu_size: int = 512  # inbound read buffer bound

    # Run control
    run_timeout_sec: float = 5.0

    # Paths
    project_root: Path = Path(__file__).parent.parent
    log_dir: Path = project_root / "logs"

    # Logging
    log_to_file: bool = False
    log_level: str = "INFO"

    class Config:
        env_prefix = "ATTHARNESS_"
        env_file = ".env"


settings = Settings()
