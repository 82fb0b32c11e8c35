"""
Lifecycle state machine for drafts and case studies.

    draft ──► under_review ──► approved ──► published
                 │   ▲  │
                 │   │  └──► rejected ──► under_review (new review cycle)
                 ▼   │
               draft (feedback requested)

``published`` is terminal: the only accepted request is ``published`` ->
``published``, which changes nothing. Every method here returns a new record
and leaves its input untouched; the repository decides what gets stored.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from casebook.core.exceptions import ImmutableError, InvalidTransitionError
from casebook.models.schemas import CaseStudy, CaseStudyStatus, Draft
from casebook.services.versioning import VersionPolicy, version_policy
from casebook.utils.helpers import utc_now

logger = logging.getLogger(__name__)

S = CaseStudyStatus

TRANSITIONS: Dict[CaseStudyStatus, FrozenSet[CaseStudyStatus]] = {
    S.DRAFT: frozenset({S.UNDER_REVIEW}),
    S.UNDER_REVIEW: frozenset({S.DRAFT, S.UNDER_REVIEW, S.APPROVED, S.REJECTED}),
    S.APPROVED: frozenset({S.PUBLISHED}),
    S.REJECTED: frozenset({S.UNDER_REVIEW}),
    S.PUBLISHED: frozenset({S.PUBLISHED}),
}

# Drafts never reach ``published``; approval turns them into case studies
DRAFT_STATUSES = frozenset({S.DRAFT, S.UNDER_REVIEW, S.APPROVED, S.REJECTED})

EDITABLE_DRAFT_STATUSES = frozenset({S.DRAFT, S.UNDER_REVIEW})

FEEDBACK_SOURCES = frozenset({S.DRAFT, S.UNDER_REVIEW, S.REJECTED})


class LifecycleStateMachine:
    def __init__(self, versions: Optional[VersionPolicy] = None) -> None:
        self.versions = versions or version_policy

    @staticmethod
    def can_transition(current: CaseStudyStatus, target: CaseStudyStatus) -> bool:
        return target in TRANSITIONS.get(current, frozenset())

    # ------------------------------------------------------------------
    # Case studies
    # ------------------------------------------------------------------

    def ensure_mutable(self, case_study: CaseStudy) -> None:
        if case_study.status == S.PUBLISHED:
            raise ImmutableError(case_study.folder_name)

    def transition(
        self,
        case_study: CaseStudy,
        target: CaseStudyStatus,
        now: Optional[datetime] = None,
    ) -> CaseStudy:
        """
        Move a case study to ``target``.

        Raises:
            ImmutableError: the case study is published and ``target`` is not.
            InvalidTransitionError: the move is not in ``TRANSITIONS``.
        """
        target = CaseStudyStatus(target)
        current = case_study.status

        if current == S.PUBLISHED:
            if target != S.PUBLISHED:
                raise ImmutableError(case_study.folder_name)
            return case_study.model_copy()

        if not self.can_transition(current, target):
            raise InvalidTransitionError("case study", current.value, target.value)

        now = now or utc_now()
        update = {"status": target, "updated_at": now}
        if target == S.APPROVED:
            update["approved_at"] = now
        elif target == S.REJECTED:
            update["rejected_at"] = now
        elif target == S.PUBLISHED:
            update["published_at"] = now
            update["version"] = self.versions.published()
            update["previous_version"] = case_study.version

        logger.info(
            "Case study '%s': %s -> %s (version %s)",
            case_study.folder_name,
            current.value,
            target.value,
            update.get("version", case_study.version),
        )
        return case_study.model_copy(update=update)

    def feedback_revision(self, case_study: CaseStudy, now: Optional[datetime] = None) -> CaseStudy:
        """
        Lifecycle half of incorporating feedback: bump the minor version,
        remember the old one and put the record back under review. The
        content merge is done by the caller.
        """
        if case_study.status == S.PUBLISHED:
            raise ImmutableError(case_study.folder_name)
        if case_study.status not in FEEDBACK_SOURCES:
            raise InvalidTransitionError(
                "case study", case_study.status.value, S.UNDER_REVIEW.value
            )

        new_version = self.versions.next_feedback_version(case_study.version)
        logger.info(
            "Case study '%s': feedback incorporated, version %s -> %s",
            case_study.folder_name,
            case_study.version,
            new_version,
        )
        return case_study.model_copy(
            update={
                "version": new_version,
                "previous_version": case_study.version,
                "status": S.UNDER_REVIEW,
                "updated_at": now or utc_now(),
            }
        )

    def resubmission(self, case_study: CaseStudy, now: Optional[datetime] = None) -> CaseStudy:
        """Existing case study re-entering review from a fresh submission."""
        if case_study.status == S.PUBLISHED:
            raise ImmutableError(case_study.folder_name)
        if case_study.status == S.UNDER_REVIEW:
            return case_study.model_copy(update={"updated_at": now or utc_now()})
        return self.transition(case_study, S.UNDER_REVIEW, now)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def transition_draft(
        self,
        draft: Draft,
        target: CaseStudyStatus,
        now: Optional[datetime] = None,
    ) -> Draft:
        target = CaseStudyStatus(target)
        if target not in DRAFT_STATUSES or not self.can_transition(draft.status, target):
            raise InvalidTransitionError("draft", draft.status.value, target.value)

        logger.info("Draft %s: %s -> %s", draft.id, draft.status.value, target.value)
        return draft.model_copy(update={"status": target, "updated_at": now or utc_now()})

    @staticmethod
    def is_draft_editable(draft: Draft) -> bool:
        return draft.status in EDITABLE_DRAFT_STATUSES


lifecycle = LifecycleStateMachine()
