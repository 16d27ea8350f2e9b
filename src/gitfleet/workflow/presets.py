"""Workflow presets shipped with the package as YAML files."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from gitfleet.errors import ConfigurationError
from gitfleet.workflow.config import Configuration, parse_configuration

PRESET_DIR = Path(__file__).parent / "presets"


@dataclass(frozen=True)
class Preset:
    name: str
    description: str


PRESETS = [
    Preset("license", "Distribute a license file across repositories using tasks apply."),
    Preset("namespace", "Rewrite Python package namespaces using tasks apply."),
    Preset("folder-rename", "Normalize repository folders to match canonical GitHub names."),
    Preset("remote-update-to-canonical", "Update origin remotes to canonical GitHub repositories."),
    Preset("remote-update-protocol", "Convert origin remotes between git/ssh/https protocols."),
    Preset("history-remove", "Purge repository history paths via git-filter-repo."),
]


def list_presets() -> list[Preset]:
    return sorted(PRESETS, key=lambda preset: preset.name)


def preset_names() -> list[str]:
    return [preset.name for preset in list_presets()]


def load_preset(name: str) -> Configuration:
    normalized = name.strip().lower()
    if normalized not in preset_names():
        raise ConfigurationError(f"unknown preset: {name}")
    document = (PRESET_DIR / f"{normalized}.yaml").read_text()
    return parse_configuration(document)
