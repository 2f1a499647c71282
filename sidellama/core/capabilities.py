"""Model capability detection from model names.

Capabilities are inferred by case-insensitive substring matching against the
pattern tables below. The tables are plain data so they can be extended
without touching the classifier.
"""

from __future__ import annotations

from enum import Enum


class Capability(str, Enum):
    TOOLS = "tools"
    VISION = "vision"
    CODE = "code"
    THINKING = "thinking"
    CHAT = "chat"


CAPABILITY_PATTERNS: dict[Capability, tuple[str, ...]] = {
    Capability.TOOLS: (
        "llama3.1",
        "llama3.2",
        "qwen2.5",
        "mistral-nemo",
        "firefunction",
        "command-r",
    ),
    Capability.VISION: (
        "llava",
        "vision",
        "qwen2-vl",
        "qwen2.5vl",
        "minicpm-v",
        "bakllava",
        "moondream",
        "llama3.2-vision",
        "llama4",
        "gemma3",
        "mistral-small3.1",
        "mistral-small3.2",
        "granite3.2-vision",
        "llava-phi3",
        "llava-llama3",
    ),
    Capability.CODE: (
        "codellama",
        "codeqwen",
        "deepseek-coder",
        "starcoder",
    ),
    Capability.THINKING: (
        "qwen2.5-coder",
        "deepseek-r1",
        "thinking",
        "o1",
        "reasoning",
    ),
}

CAPABILITY_LABELS: dict[Capability, str] = {
    Capability.TOOLS: "Tools",
    Capability.VISION: "Vision",
    Capability.CODE: "Code",
    Capability.THINKING: "Thinking",
    Capability.CHAT: "Chat",
}


def classify(
    model_name: str | None,
    patterns: dict[Capability, tuple[str, ...]] = CAPABILITY_PATTERNS,
) -> frozenset[Capability]:
    name = (model_name or "").lower()
    found = {
        capability
        for capability, needles in patterns.items()
        if name and any(needle in name for needle in needles)
    }
    if not found:
        return frozenset({Capability.CHAT})
    return frozenset(found)


def supports_tools(model_name: str | None) -> bool:
    return Capability.TOOLS in classify(model_name)


def supports_vision(model_name: str | None) -> bool:
    return Capability.VISION in classify(model_name)


def is_thinking_model(model_name: str | None) -> bool:
    return Capability.THINKING in classify(model_name)


def capability_labels(model_name: str | None) -> list[str]:
    """Display labels in table order, for model listings."""

    capabilities = classify(model_name)
    return [label for capability, label in CAPABILITY_LABELS.items() if capability in capabilities]
