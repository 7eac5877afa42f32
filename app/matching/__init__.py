from app.matching.engine import register_and_match, query_match, MatchOutcome, MatchStatus
from app.matching.selection import select_candidate

__all__ = ["register_and_match", "query_match", "MatchOutcome", "MatchStatus", "select_candidate"]
