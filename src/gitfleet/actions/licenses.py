"""License templates and the license distribution task."""

from __future__ import annotations

import datetime
import logging
from typing import Any

from gitfleet.errors import ActionError, ActionSkipped
from gitfleet.workflow.options import OptionReader
from gitfleet.workflow.state import Environment, RepositoryState
from gitfleet.workflow.task_runner import TaskStatus, run_task
from gitfleet.workflow.tasks import (
    TaskBranchDefinition,
    TaskDefinition,
    TaskFileDefinition,
    TaskFileMode,
)

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "LICENSE"
DEFAULT_CHANGE_DATE = "2029-01-01"
DEFAULT_CHANGE_LICENSE = "Apache License 2.0"

MIT = """MIT License

Copyright (c) {{YEAR}} {{AUTHOR}}

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.
"""

BSL = """Business Source License 1.1

Parameters

Licensor:             {{AUTHOR}}
Licensed Work:        {{PROJECT}}
                      The Licensed Work is (c) {{YEAR}} {{AUTHOR}}
Change Date:          {{CHANGE_DATE}}
Change License:       {{CHANGE_LICENSE}}

Terms

The Licensor hereby grants you the right to copy, modify, create derivative
works, redistribute, and make non-production use of the Licensed Work.

Effective on the Change Date, or the fourth anniversary of the first publicly
available distribution of a specific version of the Licensed Work under this
License, whichever comes first, the Licensor hereby grants you rights under
the terms of the Change License, and the rights granted in the paragraph
above terminate.

If your use of the Licensed Work does not comply with the requirements
currently in effect as described in this License, you must purchase a
commercial license from the Licensor, its affiliated entities, or authorized
resellers, or you must refrain from using the Licensed Work.

TO THE EXTENT PERMITTED BY APPLICABLE LAW, THE LICENSED WORK IS PROVIDED ON
AN "AS IS" BASIS. LICENSOR HEREBY DISCLAIMS ALL WARRANTIES AND CONDITIONS,
EXPRESS OR IMPLIED, INCLUDING (WITHOUT LIMITATION) WARRANTIES OF
MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE, NON-INFRINGEMENT, AND
TITLE.
"""

PROPRIETARY = """Copyright (c) {{YEAR}} {{AUTHOR}}. All rights reserved.

{{PROJECT}} and its source code are proprietary and confidential.
Unauthorized copying, modification, distribution, or use of this software,
via any medium, is strictly prohibited without prior written permission
from {{AUTHOR}}.
"""

TEMPLATES = {"mit": MIT, "bsl": BSL, "proprietary": PROPRIETARY}


def template_names() -> list[str]:
    return sorted(TEMPLATES)


def render_license(
    template: str,
    *,
    author: str,
    year: str,
    project: str,
    change_date: str = DEFAULT_CHANGE_DATE,
    change_license: str = DEFAULT_CHANGE_LICENSE,
) -> str:
    """Fill a named template's ``{{PLACEHOLDER}}`` slots."""
    name = template.strip().lower()
    if not name:
        raise ActionError("license template name is required")
    if name not in TEMPLATES:
        raise ActionError(f"unsupported license template {template!r}")
    replacements = {
        "{{YEAR}}": year,
        "{{AUTHOR}}": author,
        "{{PROJECT}}": project,
        "{{CHANGE_DATE}}": change_date,
        "{{CHANGE_LICENSE}}": change_license,
    }
    content = TEMPLATES[name]
    for placeholder, value in replacements.items():
        content = content.replace(placeholder, value)
    return content


def license_task(
    template: str = "mit",
    *,
    content: str = "",
    author: str = "",
    year: str = "",
    project: str = "",
    target: str = DEFAULT_TARGET,
    mode: TaskFileMode = TaskFileMode.OVERWRITE,
    branch: str = "",
    commit_message: str = "",
) -> TaskDefinition:
    """Build the task that writes a license file.

    Author and project default to the repository owner and name, rendered per
    repository when the task runs.
    """
    if not content:
        content = render_license(
            template,
            author=author or "{{ .Repository.Owner }}",
            year=year or str(datetime.date.today().year),
            project=project or "{{ .Repository.Name }}",
        )
    return TaskDefinition(
        name="distribute-license",
        ensure_clean=True,
        branch=TaskBranchDefinition(name_template=branch or "license-{{ .Repository.Name }}"),
        files=[TaskFileDefinition(path_template=target, content_template=content, mode=mode)],
        commit_message_template=commit_message or "docs: add license",
    )


async def apply_license(env: Environment, repository: RepositoryState, options: dict[str, Any]) -> None:
    reader = OptionReader(options)
    mode_value = reader.string("mode", TaskFileMode.OVERWRITE.value)
    try:
        mode = TaskFileMode(mode_value)
    except ValueError:
        raise ActionError(f"unsupported file mode: {mode_value}") from None
    task = license_task(
        reader.string("template", "mit"),
        content=str(reader.raw("content") or ""),
        author=reader.string("author") or repository.owner,
        year=reader.string("year"),
        project=reader.string("project") or repository.name,
        target=reader.string("path", DEFAULT_TARGET),
        mode=mode,
        branch=reader.string("branch"),
        commit_message=reader.string("commit_message"),
    )
    task = task.model_copy(update={"ensure_clean": reader.boolean("ensure_clean", False)})
    result = await run_task(env, repository, task, confirmed=True)
    if result.status is TaskStatus.SKIPPED:
        raise ActionSkipped(result.reason)
    logger.debug("License %s applied to %s", task.name, repository.path)
