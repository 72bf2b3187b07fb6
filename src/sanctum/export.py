"""Conversation export: Markdown, JSON or plain text, written atomically."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from sanctum.db.models import Conversation, Message
from sanctum.db.repository import Repository

FORMATS = {"markdown": ".md", "json": ".json", "text": ".txt"}


def render(conversation: Conversation, messages: list[Message], fmt: str) -> str:
    """Render *conversation* in *fmt* (``markdown``, ``json`` or ``text``).

    Raises:
        ValueError: If *fmt* is not a known format.
    """
    if fmt == "markdown":
        return _render_markdown(conversation, messages)
    if fmt == "json":
        return _render_json(conversation, messages)
    if fmt == "text":
        return _render_text(conversation, messages)
    raise ValueError(f"Unknown export format '{fmt}'. Use one of: {', '.join(FORMATS)}.")


def export_conversation(repo: Repository, conversation_id: int, fmt: str = "markdown") -> str:
    """Render a stored conversation.

    Raises:
        KeyError: If the conversation does not exist.
    """
    conversation = repo.get_conversation(conversation_id)
    if conversation is None:
        raise KeyError(conversation_id)
    return render(conversation, repo.list_messages(conversation_id), fmt)


def default_file_name(conversation: Conversation, fmt: str) -> str:
    stem = "".join(c if c.isalnum() or c in "-_" else "-" for c in conversation.title.lower())
    stem = "-".join(part for part in stem.split("-") if part)[:40] or "conversation"
    return f"{stem}-{conversation.id}{FORMATS[fmt]}"


# ------------------------------------------------------------------
# Renderers
# ------------------------------------------------------------------


def _render_markdown(conversation: Conversation, messages: list[Message]) -> str:
    lines = [f"# {conversation.title}", "", f"_Created {conversation.created_at}_", ""]
    for message in messages:
        heading = "You" if message.role == "user" else "Assistant"
        lines += [f"## {heading}", "", message.content.strip(), ""]
        if message.citations:
            lines.append("Sources:")
            for citation in message.citations:
                marker = f"[{citation.marker}] " if citation.marker is not None else ""
                where = f" (chunk {citation.ordinal + 1})" if citation.ordinal is not None else ""
                lines.append(f"- {marker}{citation.file_name}{where}")
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def _render_json(conversation: Conversation, messages: list[Message]) -> str:
    payload = {
        "id": conversation.id,
        "title": conversation.title,
        "created_at": conversation.created_at,
        "updated_at": conversation.updated_at,
        "messages": [
            {
                "role": m.role,
                "content": m.content,
                "created_at": m.created_at,
                "citations": [c.to_dict() for c in m.citations],
            }
            for m in messages
        ],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def _render_text(conversation: Conversation, messages: list[Message]) -> str:
    blocks = [conversation.title, "=" * len(conversation.title)]
    for message in messages:
        speaker = "You" if message.role == "user" else "Assistant"
        blocks.append(f"{speaker}:\n{message.content.strip()}")
    return "\n\n".join(blocks) + "\n"


# ------------------------------------------------------------------
# Atomic write
# ------------------------------------------------------------------


def write_export(path: Path, content: str) -> None:
    """Write *content* to *path* atomically (temp file then rename).

    Exports hold decrypted conversation text, so the file is owner-readable only.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
