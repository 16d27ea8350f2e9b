"""Confirmation prompting with "apply to all" cascading."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import TextIO

from gitfleet.collaborators.base import ConfirmationPrompter
from gitfleet.models import ConfirmationResult

logger = logging.getLogger(__name__)


@dataclass
class PromptState:
    """The one mutable flag of a run, owned by the executor's control loop."""

    assume_yes: bool = False


class CascadingPrompter:
    """Wrap a base prompter; an apply-to-all answer silences later prompts."""

    def __init__(self, base: ConfirmationPrompter, state: PromptState) -> None:
        self.base = base
        self.state = state

    def confirm(self, prompt: str) -> ConfirmationResult:
        if self.state.assume_yes:
            return ConfirmationResult(confirmed=True, apply_to_all=True)
        result = self.base.confirm(prompt)
        if result.apply_to_all:
            logger.debug("Apply-to-all selected; suppressing further prompts")
            self.state.assume_yes = True
            return ConfirmationResult(confirmed=True, apply_to_all=True)
        return result


class IOPrompter:
    """Line-based prompter: y/yes confirms, a/all confirms everything, else declines."""

    def __init__(self, input: TextIO | None = None, output: TextIO | None = None) -> None:
        self.input = input or sys.stdin
        self.output = output or sys.stdout

    def confirm(self, prompt: str) -> ConfirmationResult:
        self.output.write(prompt)
        self.output.flush()
        answer = self.input.readline().strip().lower()
        if answer in ("a", "all"):
            return ConfirmationResult(confirmed=True, apply_to_all=True)
        if answer in ("y", "yes"):
            return ConfirmationResult(confirmed=True)
        return ConfirmationResult()
