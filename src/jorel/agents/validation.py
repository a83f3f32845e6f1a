"""Validators for agent names and templates. Each returns the cleaned value."""

from __future__ import annotations

import re

from jorel.core.errors import ConfigurationError

_AGENT_NAME = re.compile(r"^[a-z0-9_]+$")

DEFAULT_DELEGATE_TEMPLATE = '<Agent name="{{name}}">{{description}}</Agent>'


def validate_agent_name(name: str) -> str:
    if len(name) < 3:
        raise ConfigurationError("Agent name must be at least 3 characters long")
    if len(name) > 50:
        raise ConfigurationError("Agent name must not exceed 50 characters")
    if not _AGENT_NAME.match(name):
        raise ConfigurationError(
            "Agent name must only contain lowercase letters, numbers, and underscores"
        )
    return name


def validate_system_message_template(template: str) -> str:
    cleaned = template.strip()
    if not cleaned:
        raise ConfigurationError("Agent core message template must not be empty")
    return cleaned


def validate_delegate_template(template: str) -> str:
    cleaned = template.strip()
    if not cleaned:
        raise ConfigurationError("Agent delegate template must not be empty")
    if "{{name}}" not in cleaned:
        raise ConfigurationError("Agent delegate template must include the {{name}} placeholder")
    if "{{description}}" not in cleaned:
        raise ConfigurationError(
            "Agent delegate template must include the {{description}} placeholder"
        )
    return cleaned
