from __future__ import annotations

from enum import Enum

"""Import session stages.

State transitions:
    upload -> preview -> validate -> options -> complete
    preview -> preview (new file replaces the current one)
    validate/options -> upload, complete -> upload (explicit reset)
"""

__all__ = [
    "SessionStage",
]


class SessionStage(Enum):
    UPLOAD = "upload"
    PREVIEW = "preview"
    VALIDATE = "validate"
    OPTIONS = "options"
    COMPLETE = "complete"
