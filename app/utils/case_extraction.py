"""
Case draft extraction from triage assistant replies.

The conditioning prompt instructs the model to answer with a sentinel line
followed by a JSON object once it has enough detail to open a case. This
module is the only place that knows how to find and parse that payload.
"""
import json
from dataclasses import dataclass
from typing import Optional

import structlog
from pydantic import ValidationError

from app.models.triage import CaseDraft

logger = structlog.get_logger(__name__)

CASE_MARKER = "CREATE_CASE:"


@dataclass
class ExtractionResult:
    """Outcome of scanning one assistant reply."""

    marker_found: bool
    draft: Optional[CaseDraft] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.draft is not None


class CaseDraftExtractor:
    """Locate and validate an embedded case draft."""

    def __init__(self, marker: str = CASE_MARKER):
        self.marker = marker

    def extract(self, reply: str) -> ExtractionResult:
        """
        Scan a reply for the case marker and parse the JSON after it.

        The payload is the text between the first ``{`` and the last ``}``
        that follow the marker. Never raises.
        """
        marker_at = reply.find(self.marker)
        if marker_at == -1:
            return ExtractionResult(marker_found=False)

        tail = reply[marker_at + len(self.marker):]
        start = tail.find("{")
        end = tail.rfind("}")
        if start == -1 or end <= start:
            return self._failed("No JSON object after case marker")

        try:
            payload = json.loads(tail[start:end + 1])
        except json.JSONDecodeError as e:
            return self._failed(f"Invalid JSON: {e.msg}")

        if not isinstance(payload, dict):
            return self._failed("Case payload is not an object")

        try:
            draft = CaseDraft.model_validate(payload)
        except ValidationError as e:
            missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            return self._failed(f"Case payload failed validation: {', '.join(missing)}")

        return ExtractionResult(marker_found=True, draft=draft)

    def _failed(self, error: str) -> ExtractionResult:
        logger.warning("Case draft extraction failed", error=error)
        return ExtractionResult(marker_found=True, error=error)
