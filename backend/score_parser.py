"""
Score extraction from free-text validator critiques.

The validator model is asked to emit a "SCORE: n" line. Nothing enforces
that, so extraction is best effort: the first marker wins, the number is
returned as written (no clamping), and a missing marker means "no score".
"""
import re
from typing import Optional

SCORE_PATTERN = re.compile(r'SCORE:\s*(\d+(?:\.\d+)?)', re.IGNORECASE)

# Returned by parse_score when no marker is present
NO_SCORE = 0.0


def extract_score(analysis: Optional[str]) -> Optional[float]:
    """Score from the first SCORE: marker, or None when there is none"""
    if not analysis:
        return None

    match = SCORE_PATTERN.search(analysis)
    if not match:
        return None
    return float(match.group(1))


def parse_score(analysis: Optional[str]) -> float:
    """Like extract_score, but returns the NO_SCORE sentinel (0) when absent"""
    score = extract_score(analysis)
    return NO_SCORE if score is None else score
