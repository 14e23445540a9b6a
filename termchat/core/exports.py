# Copyright 2024 TermChat contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Conversation transcript export helpers."""

from datetime import datetime
from pathlib import Path
from typing import Optional

from .conversations import Message

EXPORT_TITLE = "Terminal Chat Conversation Export"


def _default_filename(extension: str) -> str:
    timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
    return f"conversation-{timestamp}.{extension}"


def _format_timestamp(msg: Message) -> str:
    if msg.created_at is None:
        return ""
    return f" [{msg.created_at.strftime('%Y-%m-%d %H:%M:%S')}]"


def export_conversation_txt(history: list[Message], export_dir: Path, filename: Optional[str] = None) -> Path:
    """Export a conversation to a plain-text file."""
    export_dir.mkdir(parents=True, exist_ok=True)
    export_path = export_dir / (filename or _default_filename("txt"))

    lines = [
        EXPORT_TITLE,
        f"Exported: {datetime.now().isoformat()}",
        "=" * 70,
        "",
    ]
    for msg in history:
        lines.append(f"{msg.role.upper()}{_format_timestamp(msg)}:")
        lines.append(msg.content)
        lines.append("")
        lines.append("-" * 70)
        lines.append("")

    export_path.write_text('\n'.join(lines), encoding='utf-8')
    return export_path


def export_conversation_md(
    history: list[Message],
    export_dir: Path,
    filename: Optional[str] = None,
    model_id: Optional[str] = None,
) -> Path:
    """Export a conversation to a Markdown file."""
    export_dir.mkdir(parents=True, exist_ok=True)
    export_path = export_dir / (filename or _default_filename("md"))

    lines = ["# Conversation"]
    if model_id:
        lines.append(f"- Model: {model_id}")
    lines.append(f"- Exported: {datetime.now().isoformat()}")
    lines.append("")

    for msg in history:
        lines.append(f"## {msg.role.capitalize()}")
        lines.append("")
        lines.append(msg.content)
        lines.append("")

    export_path.write_text('\n'.join(lines), encoding='utf-8')
    return export_path


def export_conversation(
    history: list[Message],
    export_dir: Path,
    filename: Optional[str] = None,
    model_id: Optional[str] = None,
) -> Path:
    """Export using the format implied by ``filename`` (plain text by default)."""
    if filename and filename.lower().endswith(".md"):
        return export_conversation_md(history, export_dir, filename, model_id=model_id)
    return export_conversation_txt(history, export_dir, filename)
