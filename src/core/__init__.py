"""
Core Package

Application configuration, logging, and core utilities.

Modules:
- config: Settings management (Pydantic)
- logging: Application, LLM and audit logging setup
- prompts: Analyst system prompt and stream messages
- permissions: Table and column access policy
- exceptions: Custom exception classes
"""

from src.core.config import get_settings, settings
from src.core.logging import (
    create_rotating_file_handler,
    get_audit_logger,
    get_llm_logger,
    get_logger,
    setup_logging,
)

__all__ = [
    "get_settings",
    "settings",
    "create_rotating_file_handler",
    "get_audit_logger",
    "get_llm_logger",
    "get_logger",
    "setup_logging",
]
