from pydantic import BaseModel


class Player(BaseModel):
    id: str
    nickname: str
    score: int = 0
    joined_at: float
    join_seq: int

    def public(self) -> "PlayerPublic":
        return PlayerPublic(id=self.id, nickname=self.nickname)


class PlayerPublic(BaseModel):
    id: str
    nickname: str
