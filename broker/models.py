from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BacklogUser:
    id: int
    user_id: str
    name: str

    def to_json(self) -> dict:
        return {"id": self.id, "userId": self.user_id, "name": self.name}


@dataclass
class PendingAuthorization:
    id: str
    space_url: str
    expires_at: float
    csrf_token: str


@dataclass
class Session:
    id: str
    space_url: str
    access_token: str
    expires_at: float
    csrf_token: str
    user: BacklogUser
    refresh_token: str | None = None
