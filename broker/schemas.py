from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class ParseResult(Generic[ModelT]):
    value: ModelT | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.value is not None


def parse_model(model: type[ModelT], payload: object) -> ParseResult[ModelT]:
    try:
        return ParseResult(value=model.model_validate(payload))
    except PydanticValidationError as error:
        return ParseResult(error=f"{error.error_count()} validation error(s) for {model.__name__}")


class StatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(min_length=1)
    space_url: str = Field(alias="spaceUrl", min_length=1)
    exp: float


MAX_CODE_LENGTH = 1024
MAX_STATE_LENGTH = 2048


class CallbackRequest(BaseModel):
    code: str = Field(min_length=1, max_length=MAX_CODE_LENGTH)
    state: str = Field(min_length=1, max_length=MAX_STATE_LENGTH)


class TokenPayload(BaseModel):
    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None


class UserPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    user_id: str = Field(alias="userId")
    name: str


class ProjectPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    project_key: str = Field(alias="projectKey")
    name: str


class IssuePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    issue_key: str = Field(alias="issueKey")
    summary: str
    description: str | None = None
    updated: str
