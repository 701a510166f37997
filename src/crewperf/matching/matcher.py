"""
Authoritative job -> sheet job name matching.

The spreadsheet jobs are the source of truth: each one looks for its best
sheet name. Assignment is greedy over all pairs by descending score, so a
contested sheet name goes to the higher-scoring job and the loser falls back
to its next best free name. Proposals are never confirmed here; a reviewer
confirms them through ``crewperf.reconcile.confirm_matches``.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from crewperf.config import settings
from crewperf.errors import ConsistencyError
from crewperf.logging import logger
from crewperf.matching.similarity import score as similarity_score
from crewperf.models.reconciliation import MatchStatus


@dataclass
class MatchProposal:
    job_id: int
    job_name: str
    sheet_job_name: Optional[str]
    score: float
    status: MatchStatus
    confirmed: bool = False


def match_status(value: float, threshold: float, review_threshold: float) -> MatchStatus:
    if value >= review_threshold:
        return MatchStatus.MATCHED
    if value >= threshold:
        return MatchStatus.NEEDS_REVIEW
    return MatchStatus.NO_MATCH


def propose_matches(
    jobs: Sequence[Tuple[int, str]],
    sheet_names: Iterable[str],
    threshold: Optional[float] = None,
    review_threshold: Optional[float] = None,
) -> List[MatchProposal]:
    """Return one unconfirmed proposal per (job_id, job_name) in ``jobs``, in input order."""
    threshold = settings.MATCH_CONFIDENCE_THRESHOLD if threshold is None else threshold
    review_threshold = settings.MATCH_REVIEW_THRESHOLD if review_threshold is None else review_threshold

    names = sorted(set(n for n in sheet_names if n))
    order = {job_id: i for i, (job_id, _) in enumerate(jobs)}

    best_seen: Dict[int, float] = {job_id: 0.0 for job_id, _ in jobs}
    candidates = []
    for job_id, job_name in jobs:
        for name in names:
            s = similarity_score(job_name, name)
            best_seen[job_id] = max(best_seen[job_id], s)
            if s >= threshold:
                candidates.append((s, job_id, name))

    # Highest score first; ties resolved by job input order then sheet name
    candidates.sort(key=lambda c: (-c[0], order[c[1]], c[2]))

    assigned: Dict[int, Tuple[str, float]] = {}
    taken = set()
    for s, job_id, name in candidates:
        if job_id in assigned or name in taken:
            continue
        assigned[job_id] = (name, s)
        taken.add(name)

    proposals = []
    for job_id, job_name in jobs:
        if job_id in assigned:
            name, s = assigned[job_id]
            proposals.append(MatchProposal(
                job_id=job_id,
                job_name=job_name,
                sheet_job_name=name,
                score=s,
                status=match_status(s, threshold, review_threshold),
            ))
        else:
            proposals.append(MatchProposal(
                job_id=job_id,
                job_name=job_name,
                sheet_job_name=None,
                score=best_seen[job_id],
                status=MatchStatus.NO_MATCH,
            ))

    logger.info(
        f"Proposed {len(assigned)}/{len(proposals)} job matches against {len(names)} sheet names "
        f"(threshold {threshold:.2f})"
    )
    return proposals


def matching_stats(proposals: Sequence[MatchProposal]) -> dict:
    total = len(proposals)
    matched = sum(1 for p in proposals if p.status == MatchStatus.MATCHED)
    needs_review = sum(1 for p in proposals if p.status == MatchStatus.NEEDS_REVIEW)
    no_match = sum(1 for p in proposals if p.status == MatchStatus.NO_MATCH)
    return {
        "total": total,
        "matched": matched,
        "needs_review": needs_review,
        "no_match": no_match,
        "match_rate": round(matched / total * 100, 2) if total else 0.0,
    }


class MatchBook:
    """Bidirectional job <-> sheet name map that refuses to give one sheet name to two jobs."""

    def __init__(self, job_names: Optional[Dict[int, str]] = None):
        self._job_names = dict(job_names or {})
        self._by_job: Dict[int, Optional[str]] = {}
        self._by_sheet: Dict[str, int] = {}

    def assign(self, job_id: int, sheet_job_name: Optional[str]):
        owner = self._by_sheet.get(sheet_job_name) if sheet_job_name is not None else None
        if owner is not None and owner != job_id:
            raise ConsistencyError(
                f"Sheet job '{sheet_job_name}' is already confirmed for job "
                f"{self._label(owner)}; cannot also confirm it for job {self._label(job_id)}"
            )

        previous = self._by_job.get(job_id)
        if previous is not None:
            self._by_sheet.pop(previous, None)

        self._by_job[job_id] = sheet_job_name
        if sheet_job_name is not None:
            self._by_sheet[sheet_job_name] = job_id

    def sheet_name_for(self, job_id: int) -> Optional[str]:
        return self._by_job.get(job_id)

    def job_for(self, sheet_job_name: str) -> Optional[int]:
        return self._by_sheet.get(sheet_job_name)

    def as_dict(self) -> Dict[str, int]:
        """sheet name -> job id, for every job with a sheet name."""
        return dict(self._by_sheet)

    def _label(self, job_id: int) -> str:
        name = self._job_names.get(job_id)
        return f"{job_id} ('{name}')" if name else str(job_id)
