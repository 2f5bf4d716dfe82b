from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    player_id: str
    nickname: str
    score: int
    rank: int
