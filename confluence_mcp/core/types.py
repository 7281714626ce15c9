"""
Confluence Core Types
---------------------
Pydantic request drafts for the upstream entities the tools write
(pages, spaces, comments, labels, content properties, attachments).
Each draft knows how to encode itself into the REST wire format via
``to_wire()``; the gateway stays generic and never builds bodies.
"""

import html
import json
import mimetypes
import os
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_VERSION_MESSAGE = "Updated via MCP"
LABEL_PREFIX = "global"


class ContentType(str, Enum):
    PAGE = "page"
    BLOGPOST = "blogpost"
    COMMENT = "comment"
    ATTACHMENT = "attachment"


def storage_body(value: str) -> Dict[str, Any]:
    return {"storage": {"value": value, "representation": "storage"}}


class PageDraft(BaseModel):
    """Create or update body for a page or blog post."""
    model_config = ConfigDict(frozen=True)

    title: str
    content: str = ""
    content_type: str = ContentType.PAGE.value
    space_key: Optional[str] = None
    parent_id: Optional[str] = None
    page_id: Optional[str] = None
    # Version the page will have after the write; None for creates.
    version_number: Optional[int] = None
    version_message: Optional[str] = None

    @classmethod
    def for_update(
        cls,
        page_id: str,
        title: str,
        content: str,
        current_version: int,
        message: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> "PageDraft":
        return cls(
            page_id=page_id,
            title=title,
            content=content,
            parent_id=parent_id,
            version_number=current_version + 1,
            version_message=message or DEFAULT_VERSION_MESSAGE,
        )

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {}
        if self.page_id is not None:
            wire["id"] = self.page_id
        wire["type"] = self.content_type
        wire["title"] = self.title
        if self.space_key is not None:
            wire["space"] = {"key": self.space_key}
        if self.parent_id and self.parent_id.strip():
            wire["ancestors"] = [{"id": self.parent_id}]
        wire["body"] = storage_body(self.content)
        if self.version_number is not None:
            version: Dict[str, Any] = {"number": self.version_number}
            if self.version_message is not None:
                version["message"] = self.version_message
            wire["version"] = version
        return wire


class SpaceDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    description: Optional[str] = None
    type: str = "global"

    @field_validator("key")
    @classmethod
    def _upper_key(cls, value: str) -> str:
        return value.upper()

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"key": self.key, "name": self.name, "type": self.type}
        if self.description and self.description.strip():
            wire["description"] = {
                "plain": {"value": self.description, "representation": "plain"}
            }
        return wire


class CommentDraft(BaseModel):
    """A plain-text comment; the text is HTML-escaped into a paragraph."""
    model_config = ConfigDict(frozen=True)

    page_id: str
    text: str
    parent_comment_id: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {
            "type": ContentType.COMMENT.value,
            "container": {"id": self.page_id, "type": ContentType.PAGE.value},
            "body": storage_body(f"<p>{html.escape(self.text)}</p>"),
        }
        if self.parent_comment_id and self.parent_comment_id.strip():
            wire["ancestors"] = [{"id": self.parent_comment_id}]
        return wire


class LabelDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    names: List[str] = Field(default_factory=list)
    prefix: str = LABEL_PREFIX

    @classmethod
    def from_csv(cls, raw: str) -> "LabelDraft":
        names = [part.strip().lower() for part in raw.split(",")]
        return cls(names=[name for name in names if name])

    def to_wire(self) -> List[Dict[str, str]]:
        return [{"prefix": self.prefix, "name": name} for name in self.names]


class ContentPropertyDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: Any = None

    @classmethod
    def from_json_text(cls, key: str, raw_value: str) -> "ContentPropertyDraft":
        """Parse ``raw_value`` as JSON; raises ValueError on malformed input."""
        try:
            value = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Property value is not valid JSON: {exc.msg}") from exc
        return cls(key=key, value=value)

    def to_wire(self) -> Dict[str, Any]:
        return {"key": self.key, "value": self.value}


class AttachmentUpload(BaseModel):
    """Multipart parts for ``content/{id}/child/attachment``."""
    model_config = ConfigDict(frozen=True)

    filename: str
    data: bytes = Field(repr=False)
    media_type: str = "application/octet-stream"
    comment: Optional[str] = None

    @classmethod
    def from_path(cls, path: str, comment: Optional[str] = None) -> "AttachmentUpload":
        with open(path, "rb") as fh:
            data = fh.read()
        guessed, _ = mimetypes.guess_type(path)
        return cls(
            filename=os.path.basename(path),
            data=data,
            media_type=guessed or "application/octet-stream",
            comment=comment,
        )

    def to_wire(self) -> Tuple[Dict[str, Tuple[str, bytes, str]], Dict[str, str]]:
        files = {"file": (self.filename, self.data, self.media_type)}
        data: Dict[str, str] = {"minorEdit": "true"}
        if self.comment:
            data["comment"] = self.comment
        return files, data
