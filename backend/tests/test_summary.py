from types import SimpleNamespace

import pytest

from quizsync.services.sessions.summary import build_summary, difficulty_bucket


def _quiz():
    q0 = SimpleNamespace(id=10, text='Capital of France?', options=[
        SimpleNamespace(id=100, text='Paris', is_correct=True),
        SimpleNamespace(id=101, text='Lyon', is_correct=False),
    ])
    q1 = SimpleNamespace(id=11, text='2 + 2?', options=[
        SimpleNamespace(id=110, text='3', is_correct=False),
        SimpleNamespace(id=111, text='4', is_correct=True),
    ])
    return SimpleNamespace(id=1, title='Mixed', questions=[q0, q1])


def _answer(pid, index, option, correct, taken):
    return SimpleNamespace(player_id=pid, question_index=index, option_id=option,
                           is_correct=correct, time_taken_seconds=taken)


PLAYERS = [SimpleNamespace(id=1, display_name='Ann'), SimpleNamespace(id=2, display_name='Ben')]


@pytest.mark.parametrize('accuracy,bucket', [
    (100, 'Easy'), (80, 'Easy'), (79.9, 'Medium'), (50, 'Medium'),
    (30, 'Hard'), (29.9, 'Very Hard'), (0, 'Very Hard'),
])
def test_difficulty_buckets(accuracy, bucket):
    assert difficulty_bucket(accuracy) == bucket


def test_report_over_answer_log():
    answers = [
        _answer(1, 0, 100, True, 4.0),
        _answer(2, 0, 101, False, 8.0),
        _answer(1, 1, 111, True, 2.0),
    ]
    report = build_summary(_quiz(), answers, PLAYERS)

    assert report.total_answers == 3
    assert report.overall_accuracy == pytest.approx(200 / 3)
    assert report.participation_rate == pytest.approx(75.0)
    assert report.average_score == 100.0

    q0, q1 = report.questions
    assert q0.accuracy == 50.0 and q0.difficulty == 'Medium'
    assert q0.average_time == 6.0
    assert [(o.option_id, o.count) for o in q0.distribution] == [(100, 1), (101, 1)]
    assert q1.accuracy == 100.0 and q1.no_answers == 1

    assert report.most_difficult.question_index == 0
    assert report.easiest.question_index == 1

    ann, ben = report.players
    assert (ann.player_id, ann.score, ann.accuracy, ann.average_time) == (1, 200, 100.0, 3.0)
    assert (ben.player_id, ben.score, ben.accuracy) == (2, 0, 0.0)
    assert report.fastest_player.player_id == 1
    assert report.slowest_player.player_id == 2
    assert report.score_distribution == {'Excellent': 1, 'Good': 0, 'Average': 0, 'Below Average': 1}

    exported = report.to_dict()
    assert exported['questions'][0]['distribution'][0]['text'] == 'Paris'


def test_empty_game_reports_zeros_without_failing():
    report = build_summary(_quiz(), [], [])
    assert report.overall_accuracy == 0.0
    assert report.participation_rate == 0.0
    assert report.average_score == 0.0
    assert all(q.accuracy == 0.0 and q.difficulty == 'Very Hard' for q in report.questions)
    assert report.fastest_player is None


def test_summary_requires_completed_session(make_session):
    from quizsync.services.sessions.errors import StateError
    machine, quiz, players = make_session()
    machine.start_game()
    with pytest.raises(StateError):
        machine.summary()
    machine.submit_answer(players[0].id, 0, quiz.questions[0].options[0].id)
    machine.end_game()
    report = machine.summary()
    assert report.total_answers == 1
    assert report.participation_rate == pytest.approx(100 / 6)
