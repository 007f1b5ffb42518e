"""Pydantic settings for the snippet evaluation service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = {"env_prefix": "JAIL_"}

    # Execution policy, comma-separated. Methods are ``Owner#name`` pairs.
    blocked_packages: str = (
        "ctypes,multiprocessing,os,pty,resource,shutil,signal,socket,"
        "subprocess,sys,threading,_thread,importlib"
    )
    blocked_classes: str = "io.FileIO,pathlib.Path"
    blocked_methods: str = "builtins#open,builtins#breakpoint,builtins#input"

    timeout_seconds: float = 15.0
    stop_grace_seconds: float = 2.0
    output_initial_capacity_bytes: int = 3200
    max_output_bytes: int = 65_536  # 64 KB
    output_encoding: str = "utf-8"
    engine_start_timeout_seconds: float = 30.0
    engine_memory_limit_mb: int = 0  # 0 disables the limit

    max_command_size_bytes: int = 65_536
    session_idle_seconds: int = 900
    max_sessions: int = 64
    cleanup_interval_seconds: int = 60
    cors_allowed_origins: list[str] = []
    log_level: str = "INFO"


def comma_separated(value: str | None) -> list[str]:
    """Split a comma-separated setting, dropping blanks around and between entries."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
