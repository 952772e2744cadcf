"""
Engine configuration.

Pydantic schemas for the model endpoint, the vision fallback endpoint and the
agent loop. API keys are read from the environment when not given directly.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tabpilot.agents.exceptions import ConfigurationError
from tabpilot.environment.tools import default_enabled_tools

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://integrate.api.nvidia.com/v1/chat/completions"
DEFAULT_MODEL = "moonshotai/kimi-k2-thinking"
DEFAULT_VISION_MODEL = "mistralai/mistral-large-3-675b-instruct-2512"
TOOLS_PROMPT_PLACEHOLDER = "{{TOOLS_PROMPT}}"
FALLBACK_TEMPERATURE = 0.3

DEFAULT_SYSTEM_PROMPT = f"You are a browser automation agent.\n{TOOLS_PROMPT_PLACEHOLDER}"
DEFAULT_TOOLS_PROMPT = """Strategy:
1. If the user asks you to open a website, call open_url directly.
2. Call get_page_interactables to observe the page.
3. Act once you have the element ID.
4. If get_page_interactables finds no suitable element, or the layout is complex, call analyze_screenshot to have a vision model identify the element ID."""


class VisionConfig(BaseModel):
    """Settings for the single-shot vision fallback endpoint."""

    api_url: str = Field(DEFAULT_API_URL, description="Chat-completions URL of the vision model")
    api_key: Optional[str] = Field(
        None, description="API key (reads TABPILOT_VISION_API_KEY if None)"
    )
    model: str = Field(DEFAULT_VISION_MODEL, description="Vision model identifier")
    max_tokens: int = Field(300, gt=0, description="Completion limit for the vision answer")

    @model_validator(mode="after")
    def _read_api_key(self) -> "VisionConfig":
        if self.api_key is None:
            self.api_key = os.getenv("TABPILOT_VISION_API_KEY") or None
        return self

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


class EngineConfig(BaseModel):
    """
    Settings for the agent execution engine.

    Mirrors the options a user can change in the settings panel.
    ``require_api_key`` is the only check made lazily: a config without a key
    is valid until a turn actually needs to call the model.
    """

    api_url: str = Field(DEFAULT_API_URL, description="Chat-completions endpoint URL")
    api_key: Optional[str] = Field(None, description="API key (reads TABPILOT_API_KEY if None)")
    model: str = Field(DEFAULT_MODEL, description="Model identifier sent in the request body")
    system_prompt: str = Field(
        DEFAULT_SYSTEM_PROMPT,
        description=f"System prompt; {TOOLS_PROMPT_PLACEHOLDER} is replaced by tools_prompt",
    )
    tools_prompt: str = Field(DEFAULT_TOOLS_PROMPT, description="Tool-usage guidance block")
    temperature: Optional[float] = Field(
        FALLBACK_TEMPERATURE, ge=0.0, le=2.0, description="Sampling temperature"
    )
    top_p: Optional[float] = Field(None, ge=0.0, le=1.0, description="Nucleus sampling mass")
    custom_json: str = Field(
        "", description="JSON object text merged over the request body"
    )
    injected_user_context: str = Field("", description="User message sent before the history")
    injected_assistant_context: str = Field(
        "", description="Assistant message sent before the history"
    )
    max_context_chars: int = Field(50000, gt=0, description="Page text truncation limit")
    max_loops: int = Field(15, gt=0, description="Hard cap on loop iterations per turn")
    enabled_tools: Dict[str, bool] = Field(
        default_factory=default_enabled_tools, description="Tool name -> enabled"
    )
    simulate_extracted_calls: bool = Field(
        False,
        description="Answer text-extracted tool calls with simulated results instead of executing them",
    )
    auto_permanent: bool = Field(False, description="Attach page context as a memory card each turn")
    auto_temporary: bool = Field(False, description="Inline page context into each user turn")
    request_timeout: float = Field(360.0, gt=0, description="Total HTTP timeout in seconds")
    vision: VisionConfig = Field(default_factory=VisionConfig)

    model_config = ConfigDict(extra="forbid")

    @field_validator("enabled_tools", mode="before")
    @classmethod
    def _fill_enabled_tools(cls, value: Any) -> Any:
        """Tools missing from a partial mapping default to enabled."""
        if isinstance(value, dict):
            merged = default_enabled_tools()
            merged.update(value)
            return merged
        return value

    @model_validator(mode="after")
    def _read_api_key(self) -> "EngineConfig":
        if self.api_key is None:
            self.api_key = os.getenv("TABPILOT_API_KEY") or None
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> "EngineConfig":
        """Build a config from ``TABPILOT_*`` environment variables."""
        values: Dict[str, Any] = {}
        env_map = {
            "TABPILOT_API_URL": "api_url",
            "TABPILOT_API_KEY": "api_key",
            "TABPILOT_MODEL": "model",
            "TABPILOT_SYSTEM_PROMPT": "system_prompt",
            "TABPILOT_TEMPERATURE": "temperature",
            "TABPILOT_MAX_LOOPS": "max_loops",
            "TABPILOT_CUSTOM_JSON": "custom_json",
        }
        for env_name, field_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                values[field_name] = value

        vision: Dict[str, Any] = {}
        for env_name, field_name in (
            ("TABPILOT_VISION_API_URL", "api_url"),
            ("TABPILOT_VISION_MODEL", "model"),
        ):
            value = os.getenv(env_name)
            if value:
                vision[field_name] = value
        if vision:
            values["vision"] = vision

        values.update(overrides)
        return cls(**values)

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ConfigurationError(
                "No API key configured for the model endpoint",
                config_field="api_key",
                user_message="Please configure an API key",
            )
        return self.api_key

    @property
    def effective_temperature(self) -> float:
        return self.temperature or FALLBACK_TEMPERATURE

    def custom_body(self) -> Dict[str, Any]:
        """Parsed ``custom_json``; invalid or non-object text is ignored."""
        if not self.custom_json.strip():
            return {}
        try:
            parsed = json.loads(self.custom_json)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring invalid custom JSON: {e}")
            return {}
        if not isinstance(parsed, dict):
            logger.warning("Ignoring custom JSON that is not an object")
            return {}
        return parsed
