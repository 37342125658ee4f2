"""Handles all user-facing configuration actions."""

import json
import os

from ait.globals import CONFIG_FILE

OPENAI_ENDPOINT = "https://api.openai.com/v1"
OLLAMA_ENDPOINT = "http://localhost:11434/v1"


class Config:
    """User-facing configuration variables"""

    def __init__(self):
        self.models: list[dict] = [
            {"alias": "gpt-4o-mini", "name": "gpt-4o-mini", "endpoint": OPENAI_ENDPOINT},
            {"alias": "gpt-4o", "name": "gpt-4o", "endpoint": OPENAI_ENDPOINT},
            {"alias": "o1-mini", "name": "o1-mini", "endpoint": OPENAI_ENDPOINT},
            {"alias": "o3-mini", "name": "o3-mini", "endpoint": OPENAI_ENDPOINT},
            {"alias": "gemma", "name": "gemma:2b", "endpoint": OLLAMA_ENDPOINT},
        ]
        # Default values
        self.active_model: str = "gpt-4o-mini"
        self.system_prompt: str = "You are a helpful, friendly assistant."
        self.temperature: float = 0.2
        self.refresh_rate: int = 30
        self.rich_code_theme: str = "monokai"
        self.stream_responses: bool = True

    def active(self) -> dict:
        """Return the currently active model profile."""
        for m in self.models:
            if m["alias"] == self.active_model:
                return m
        return self.models[0]

    def profile_for(self, model_name: str) -> dict | None:
        """Return the first profile serving a model name, if any."""
        for m in self.models:
            if m["name"] == model_name:
                return m
        return None

    def save(self):
        """Saves any config changes to the config file."""
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            json.dump(self.__dict__, f, indent=2)

    def load(self):
        """Loads the config file."""
        if not os.path.exists(CONFIG_FILE):
            self.save()
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            data = json.load(f)
        for key, val in data.items():
            setattr(self, key, val)

    @property
    def endpoint(self) -> str:
        """Returns the API endpoint for use in Chat"""
        return self.active()["endpoint"]

    @property
    def model_name(self) -> str:
        """Returns the model name for use in Chat"""
        return self.active()["name"]

    @property
    def alias_name(self) -> str:
        """Returns the profile name for use in Chat"""
        return self.active()["alias"]
