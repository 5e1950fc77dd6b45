from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from logiaudit.quality.gatekeeper import Gatekeeper, GatekeeperVerdict
from logiaudit.utils.logging import setup_logger


logger = setup_logger()


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: Optional[str] = None


class AuditOracle(Protocol):
    """External multimodal auditor. Returns its JSON report as a dict; the schema is its own."""

    def audit(self, goods: ImagePayload, document: ImagePayload, prompt_hint: Optional[str] = None) -> Dict[str, Any]:
        ...


class GateAction(str, Enum):
    PROCEED = "proceed"
    REVIEW = "review"  # blurry: ask for a retake or an explicit override


class RetakeRequired(Exception):
    """The document photo was rejected and no override was given."""

    def __init__(self, decision: "GateDecision") -> None:
        super().__init__(
            f"Document photo looks blurry (score {decision.verdict.score}, threshold {decision.threshold}); "
            "please upload a clearer photo"
        )
        self.decision = decision


@dataclass(frozen=True)
class GateDecision:
    action: GateAction
    verdict: GatekeeperVerdict
    threshold: int
    # the payload this decision was computed for
    document: Optional[ImagePayload] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_verdict(
        cls,
        verdict: GatekeeperVerdict,
        threshold: int,
        document: Optional[ImagePayload] = None,
    ) -> "GateDecision":
        action = GateAction.REVIEW if verdict.is_blurry else GateAction.PROCEED
        return cls(action=action, verdict=verdict, threshold=threshold, document=document)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, "threshold": self.threshold, **self.verdict.to_dict()}


@dataclass
class AuditOutcome:
    report: Dict[str, Any]
    decision: GateDecision
    degraded: bool = False
    annotations: List[str] = field(default_factory=list)
    analysed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def degraded_note(score: int) -> str:
    return f"[SYSTEM NOTE] Audit performed on blurry image (Score: {score}). Accuracy may be degraded."


class AuditGate:
    """Runs the sharpness gate on the document photo, then (and only then) the oracle."""

    def __init__(self, gatekeeper: Gatekeeper, oracle: AuditOracle) -> None:
        self.gatekeeper = gatekeeper
        self.oracle = oracle

    def precheck(self, document: ImagePayload) -> GateDecision:
        # Only the document is gated; the goods photo is not read for OCR.
        verdict = self.gatekeeper.analyze(document.data, document.mime_type)
        if verdict.failed_open:
            logger.warning(f"Sharpness check unavailable ({verdict.reason}); proceeding without it")
        return GateDecision.from_verdict(verdict, self.gatekeeper.config.threshold, document)

    def run(
        self,
        goods: ImagePayload,
        document: ImagePayload,
        decision: GateDecision,
        override: bool = False,
    ) -> AuditOutcome:
        if decision.document != document:
            raise ValueError("Gate decision was not computed for this document; run precheck again")
        forced = decision.action is GateAction.REVIEW
        if forced and not override:
            raise RetakeRequired(decision)

        hint = None
        if forced:
            logger.warning(f"User override: auditing blurry document (score {decision.verdict.score})")
            hint = "The document photo is blurry; read it as carefully as possible and flag uncertain fields."

        report = self.oracle.audit(goods, document, hint)
        outcome = AuditOutcome(report=report, decision=decision, degraded=forced)
        if forced:
            outcome.annotations.append(degraded_note(decision.verdict.score))
        return outcome

    def audit(self, goods: ImagePayload, document: ImagePayload, override: bool = False) -> AuditOutcome:
        """precheck + run in one step."""
        return self.run(goods, document, self.precheck(document), override=override)
