"""
Fuzzy job-name matching package.

Exposes:
- score / normalize_job_name : pure similarity of two job names
- propose_matches            : greedy, never-confirmed job -> sheet name proposals
- MatchBook                  : injective confirmed mapping
"""
from crewperf.matching.similarity import score, normalize_job_name
from crewperf.matching.matcher import MatchProposal, MatchBook, propose_matches, matching_stats

__all__ = [
    "score", "normalize_job_name",
    "MatchProposal", "MatchBook", "propose_matches", "matching_stats",
]
