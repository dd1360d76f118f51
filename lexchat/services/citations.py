"""Post-answer citation status check."""

import asyncio
from typing import Any, Dict, List, Optional

import structlog

from lexchat.agents.intent_classifier import extract_case_numbers
from lexchat.schemas.events import CitationWarningPayload
from lexchat.services.collaborators import CitationService

logger = structlog.get_logger(__name__)

MAX_CITED_CASES = 10

WARNING_MESSAGES = {
    "explicitly_overruled": "Case {case_number} was overruled by a higher court",
    "limited": "Case {case_number} was partially modified or limited by a higher court",
}


class CitationVerifier:
    """
    Flags cited cases that were overruled or limited.

    Runs under a hard timeout; any failure yields no warnings.
    """

    def __init__(self, service: Optional[CitationService], timeout: float = 5.0):
        self.service = service
        self.timeout = timeout

    async def verify(self, answer: str) -> List[CitationWarningPayload]:
        if self.service is None or not answer:
            return []

        case_numbers = extract_case_numbers(answer, limit=MAX_CITED_CASES)
        if not case_numbers:
            return []

        try:
            results = await asyncio.wait_for(self.service.batch_analyze(case_numbers), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Citation verification timed out", cases=len(case_numbers), timeout=self.timeout)
            return []
        except Exception as e:
            logger.warning("Citation verification failed", error=str(e))
            return []

        warnings = []
        for result in results or []:
            warning = self._to_warning(result)
            if warning is not None:
                warnings.append(warning)

        if warnings:
            logger.info("Citation warnings", count=len(warnings), cases=[w.case_number for w in warnings])
        return warnings

    @staticmethod
    def _to_warning(result: Dict[str, Any]) -> Optional[CitationWarningPayload]:
        if not isinstance(result, dict):
            return None
        status = result.get("status")
        template = WARNING_MESSAGES.get(status)
        case_number = result.get("case_number")
        if template is None or not case_number:
            return None
        try:
            confidence = float(result.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        affecting = [d for d in result.get("affecting_decisions") or [] if isinstance(d, dict)]
        return CitationWarningPayload(
            case_number=str(case_number),
            status=status,
            confidence=confidence,
            affecting_decisions=affecting,
            message=template.format(case_number=case_number),
        )
