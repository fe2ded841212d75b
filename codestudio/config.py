import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "CODESTUDIO_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}
DEFAULT_EXCLUDED_DIRS = ["node_modules", ".git", "dist", "build", ".next"]


class AppSettings(BaseModel):
    # Workspace
    workspace_root: Optional[str] = None
    excluded_dirs: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_DIRS))
    index_max_file_bytes: int = 200_000

    # Agent loop
    max_tool_turns: int = 5
    context_char_budget: int = 20000
    context_char_budgets: Dict[str, int] = Field(default_factory=dict)
    request_timeout_s: float = 120.0
    max_output_tokens: Optional[int] = None

    # Collaborators
    shell_timeout_s: float = 60.0
    shell_start_dir: str = "~"
    syntax_check_command: List[str] = Field(default_factory=lambda: ["esbuild", "--log-level=error"])
    fetch_max_chars: int = 100_000
    app_referer: str = "http://localhost:8000"
    app_title: str = "Code Studio"

    # Server
    database_path: str = "codestudio.db"
    host: str = "0.0.0.0"
    port: int = 8000

    def context_budget_for(self, provider: str) -> int:
        return int(self.context_char_budgets.get(provider) or self.context_char_budget)

    def to_safe_dict(self) -> dict:
        return self.model_dump()

    model_config = {"protected_namespaces": ()}


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "workspace_root": os.getenv("WORKSPACE_ROOT"),
        "database_path": os.getenv("DATABASE_PATH"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
        "max_tool_turns": os.getenv("MAX_TOOL_TURNS"),
        "context_char_budget": os.getenv("CONTEXT_CHAR_BUDGET"),
        "request_timeout_s": os.getenv("REQUEST_TIMEOUT_S"),
        "max_output_tokens": os.getenv("MAX_OUTPUT_TOKENS"),
        "shell_timeout_s": os.getenv("SHELL_TIMEOUT_S"),
        "shell_start_dir": os.getenv("SHELL_START_DIR"),
        "syntax_check_command": os.getenv("SYNTAX_CHECK_COMMAND"),
        "fetch_max_chars": os.getenv("FETCH_MAX_CHARS"),
        "app_referer": os.getenv("APP_REFERER"),
        "app_title": os.getenv("APP_TITLE"),
    }
    cleaned = {k: v for k, v in env_map.items() if v not in (None, "")}
    for key in ("port", "max_tool_turns", "context_char_budget", "max_output_tokens", "fetch_max_chars"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])
    for key in ("request_timeout_s", "shell_timeout_s"):
        if key in cleaned:
            cleaned[key] = float(cleaned[key])
    if "syntax_check_command" in cleaned:
        cleaned["syntax_check_command"] = cleaned["syntax_check_command"].split()
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(config_path: Optional[Path] = None) -> AppSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except Exception:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    return AppSettings(**merged)
