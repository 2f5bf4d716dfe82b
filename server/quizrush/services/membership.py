import time
from typing import Dict, List, Optional
from uuid import uuid4

from quizrush.errors import InvalidNickname, NicknameTaken, PlayerNotFound
from quizrush.models.player import Player


class MembershipRegistry:
    """Roster of the players in one game.

    Nicknames are trimmed and compared case-sensitively. Whether a game still
    accepts players is decided by the caller; the registry only guards
    nickname validity and uniqueness.
    """

    def __init__(self, max_nickname_length: int = 24):
        self.max_nickname_length = max_nickname_length
        self._players: Dict[str, Player] = {}
        self._by_nickname: Dict[str, str] = {}
        self._join_seq = 0

    def _normalize(self, nickname: Optional[str]) -> str:
        cleaned = (nickname or "").strip()
        if not cleaned:
            raise InvalidNickname("nickname must not be empty")
        if len(cleaned) > self.max_nickname_length:
            raise InvalidNickname(
                f"nickname must be at most {self.max_nickname_length} characters"
            )
        return cleaned

    def prepare(self, nickname: Optional[str], now: Optional[float] = None) -> Player:
        cleaned = self._normalize(nickname)
        if cleaned in self._by_nickname:
            raise NicknameTaken(f"nickname {cleaned!r} is already taken")
        return Player(
            id=uuid4().hex,
            nickname=cleaned,
            score=0,
            joined_at=time.time() if now is None else now,
            join_seq=self._join_seq + 1,
        )

    def commit(self, player: Player) -> Player:
        if player.nickname in self._by_nickname:
            raise NicknameTaken(f"nickname {player.nickname!r} is already taken")
        self._players[player.id] = player
        self._by_nickname[player.nickname] = player.id
        self._join_seq = max(self._join_seq, player.join_seq)
        return player

    def join(self, nickname: Optional[str], now: Optional[float] = None) -> Player:
        return self.commit(self.prepare(nickname, now))

    def get(self, player_id: str) -> Player:
        player = self._players.get(player_id)
        if player is None:
            raise PlayerNotFound(f"player {player_id} is not in this game")
        return player

    def remove(self, player_id: str) -> Player:
        player = self._players.pop(player_id, None)
        if player is None:
            raise PlayerNotFound(f"player {player_id} is not in this game")
        del self._by_nickname[player.nickname]
        return player

    def players(self) -> List[Player]:
        return sorted(self._players.values(), key=lambda p: p.join_seq)

    def count(self) -> int:
        return len(self._players)

    def __len__(self) -> int:
        return len(self._players)

    def __contains__(self, player_id: str) -> bool:
        return player_id in self._players
