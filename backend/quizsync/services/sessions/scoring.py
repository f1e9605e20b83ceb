from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List

POINTS_PER_CORRECT = 100


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    player_id: int
    display_name: str
    score: int
    correct_answers: int
    answered: int
    total_time_seconds: float

    def to_dict(self):
        return asdict(self)


def score_answers(answers: Iterable) -> Dict[int, int]:
    """Score per player id: a flat 100 for each correct accepted answer."""
    scores: Dict[int, int] = defaultdict(int)
    for a in answers:
        if a.is_correct:
            scores[a.player_id] += POINTS_PER_CORRECT
    return dict(scores)


def build_leaderboard(players: Iterable, answers: Iterable) -> List[LeaderboardEntry]:
    """Rank players by score, then by total answer time; join order breaks the rest.

    Always recomputed from the answer log, never from running counters.
    """
    answers = list(answers)
    scores = score_answers(answers)
    correct: Dict[int, int] = defaultdict(int)
    answered: Dict[int, int] = defaultdict(int)
    total_time: Dict[int, float] = defaultdict(float)
    for a in answers:
        answered[a.player_id] += 1
        total_time[a.player_id] += a.time_taken_seconds
        if a.is_correct:
            correct[a.player_id] += 1

    # sorted() is stable, so equal keys keep the incoming player order
    ordered = sorted(
        players,
        key=lambda p: (-scores.get(p.id, 0), total_time[p.id]),
    )
    return [
        LeaderboardEntry(
            rank=position,
            player_id=p.id,
            display_name=p.display_name,
            score=scores.get(p.id, 0),
            correct_answers=correct[p.id],
            answered=answered[p.id],
            total_time_seconds=round(total_time[p.id], 3),
        )
        for position, p in enumerate(ordered, start=1)
    ]
