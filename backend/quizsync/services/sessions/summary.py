"""Post-game analytics over the final answer log.

``build_summary`` is pure: it reads the quiz, the accepted answers and the
players and returns a :class:`SummaryReport`. Export tooling consumes
``SummaryReport.to_dict()``; nothing here writes anywhere.
"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from .scoring import build_leaderboard

EASY = 'Easy'
MEDIUM = 'Medium'
HARD = 'Hard'
VERY_HARD = 'Very Hard'

SCORE_BANDS = (
    ('Excellent', 0.8),
    ('Good', 0.6),
    ('Average', 0.4),
    ('Below Average', 0.0),
)


def ratio_percent(part, whole) -> float:
    if not whole:
        return 0.0
    return 100.0 * part / whole


def difficulty_bucket(accuracy: float) -> str:
    if accuracy >= 80:
        return EASY
    if accuracy >= 50:
        return MEDIUM
    if accuracy >= 30:
        return HARD
    return VERY_HARD


@dataclass
class OptionStats:
    option_id: int
    text: str
    is_correct: bool
    count: int
    percentage: float


@dataclass
class QuestionStats:
    question_index: int
    question_id: int
    text: str
    total_answers: int
    correct_answers: int
    no_answers: int
    accuracy: float
    difficulty: str
    average_time: float
    distribution: List[OptionStats] = field(default_factory=list)


@dataclass
class PlayerStats:
    player_id: int
    display_name: str
    rank: int
    score: int
    total_answers: int
    correct_answers: int
    accuracy: float
    average_time: float
    total_time: float


@dataclass
class SummaryReport:
    quiz_id: int
    title: str
    total_questions: int
    total_players: int
    total_answers: int
    correct_answers: int
    overall_accuracy: float
    average_score: float
    participation_rate: float
    questions: List[QuestionStats]
    players: List[PlayerStats]
    most_difficult: Optional[QuestionStats]
    easiest: Optional[QuestionStats]
    fastest_player: Optional[PlayerStats]
    slowest_player: Optional[PlayerStats]
    score_distribution: Dict[str, int]

    def to_dict(self) -> dict:
        return asdict(self)


def _question_stats(index, question, answers, total_players) -> QuestionStats:
    mine = [a for a in answers if a.question_index == index]
    correct = sum(1 for a in mine if a.is_correct)
    accuracy = ratio_percent(correct, len(mine))
    distribution = []
    for option in question.options:
        count = sum(1 for a in mine if a.option_id == option.id)
        distribution.append(OptionStats(
            option_id=option.id,
            text=option.text,
            is_correct=bool(option.is_correct),
            count=count,
            percentage=ratio_percent(count, len(mine)),
        ))
    return QuestionStats(
        question_index=index,
        question_id=question.id,
        text=question.text,
        total_answers=len(mine),
        correct_answers=correct,
        no_answers=max(0, total_players - len(mine)),
        accuracy=accuracy,
        difficulty=difficulty_bucket(accuracy),
        average_time=(sum(a.time_taken_seconds for a in mine) / len(mine)) if mine else 0.0,
        distribution=distribution,
    )


def _score_distribution(players: List[PlayerStats]) -> Dict[str, int]:
    bands = {label: 0 for label, _ in SCORE_BANDS}
    top = max((p.score for p in players), default=0)
    for p in players:
        share = p.score / top if top > 0 else 0.0
        for label, floor in SCORE_BANDS:
            if share >= floor:
                bands[label] += 1
                break
    return bands


def build_summary(quiz, answers, players) -> SummaryReport:
    questions = list(quiz.questions)
    answers = list(answers)
    players = list(players)

    question_stats = [_question_stats(i, q, answers, len(players)) for i, q in enumerate(questions)]

    player_stats = []
    for entry in build_leaderboard(players, answers):
        accuracy = ratio_percent(entry.correct_answers, entry.answered)
        player_stats.append(PlayerStats(
            player_id=entry.player_id,
            display_name=entry.display_name,
            rank=entry.rank,
            score=entry.score,
            total_answers=entry.answered,
            correct_answers=entry.correct_answers,
            accuracy=accuracy,
            average_time=(entry.total_time_seconds / entry.answered) if entry.answered else 0.0,
            total_time=entry.total_time_seconds,
        ))

    correct = sum(1 for a in answers if a.is_correct)
    responders = [p for p in player_stats if p.total_answers]

    return SummaryReport(
        quiz_id=quiz.id,
        title=quiz.title,
        total_questions=len(questions),
        total_players=len(players),
        total_answers=len(answers),
        correct_answers=correct,
        overall_accuracy=ratio_percent(correct, len(answers)),
        average_score=(sum(p.score for p in player_stats) / len(player_stats)) if player_stats else 0.0,
        participation_rate=ratio_percent(len(answers), len(questions) * len(players)),
        questions=question_stats,
        players=player_stats,
        # min/max keep the first of equal candidates
        most_difficult=min(question_stats, key=lambda q: q.accuracy, default=None),
        easiest=max(question_stats, key=lambda q: q.accuracy, default=None),
        fastest_player=min(responders, key=lambda p: p.average_time, default=None),
        slowest_player=max(responders, key=lambda p: p.average_time, default=None),
        score_distribution=_score_distribution(player_stats),
    )
