"""uploads.py

Upload authorization for rendered posters: PNG only, at most 20 MB.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MAX_UPLOAD_BYTES = 20 * 1024 * 1024


class UploadPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, alias_generator=to_camel,
                              populate_by_name=True)

    allowed_content_types: List[str] = Field(default_factory=lambda: ["image/png"])
    maximum_size_in_bytes: int = MAX_UPLOAD_BYTES

    def allows(self, content_type: str, size: int) -> bool:
        return content_type in self.allowed_content_types and 0 < size <= self.maximum_size_in_bytes


def upload_policy() -> UploadPolicy:
    return UploadPolicy()


def poster_blob_name(timestamp_ms: int) -> str:
    """Storage path for an uploaded poster, e.g. ``posters/1736900000000.png``."""
    return f"posters/{timestamp_ms}.png"
