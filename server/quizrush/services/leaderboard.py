from typing import Iterable, List

from quizrush.models.leaderboard import LeaderboardEntry
from quizrush.models.player import Player


def rank(players: Iterable[Player]) -> List[LeaderboardEntry]:
    """Rank players by score, highest first.

    Ranks are positions: tied scores get consecutive ranks, the player who
    joined earlier first.
    """
    ordered = sorted(players, key=lambda p: (-p.score, p.join_seq))
    return [
        LeaderboardEntry(player_id=p.id, nickname=p.nickname, score=p.score, rank=position)
        for position, p in enumerate(ordered, start=1)
    ]
