"""Result and session-facing models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal
import uuid

from aster.images import to_data_uri

ImageStatus = Literal["success", "error"]
Role = Literal["user", "model"]


def new_id() -> str:
    """Return a fresh unique identifier."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class GeneratedImage:
    """One terminal image outcome for a task slot."""

    id: str
    data: bytes = b""
    mime_type: str = ""
    status: ImageStatus = "success"

    @classmethod
    def success(cls, data: bytes, mime_type: str) -> GeneratedImage:
        """Build a success result with a fresh id."""
        return cls(id=new_id(), data=data, mime_type=mime_type, status="success")

    @classmethod
    def error(cls) -> GeneratedImage:
        """Build the placeholder emitted when a slot exhausts its retries."""
        return cls(id=new_id(), status="error")

    @property
    def ok(self) -> bool:
        """Whether this result carries image data."""
        return self.status == "success"

    @property
    def data_uri(self) -> str:
        """Image as a data URI, or an empty string for error results."""
        if not self.ok or not self.data:
            return ""
        return to_data_uri(self.mime_type, self.data)


@dataclass(frozen=True)
class UploadedImage:
    """An image the user attached to the current prompt."""

    id: str
    data: str  # data URI
    mime_type: str = ""
    name: str | None = None


@dataclass
class Message:
    """A prior conversation turn as stored by the session layer.

    Only ``selected_image_id`` on model turns matters to generation: the
    selected, successful image is carried forward as context.
    """

    role: Role
    id: str = field(default_factory=new_id)
    text: str | None = None
    images: list[GeneratedImage] = field(default_factory=list)
    uploaded_images: list[UploadedImage] = field(default_factory=list)
    selected_image_id: str | None = None

    def selected_image(self) -> GeneratedImage | None:
        """Return the selected image when it is a successful model output."""
        if self.role != "model" or not self.selected_image_id:
            return None
        for image in self.images:
            if image.id == self.selected_image_id:
                return image if image.ok else None
        return None
