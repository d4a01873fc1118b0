from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from referent.services.article_extractor import ParsedArticle
from referent.services.stage_errors import ErrorStage


# Request fields accept any JSON value; a missing or non-string field
# is reported as a stage-scoped 400 by the service.
class ParseRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Any = None


class TransformRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    content: Any = None
    title: Any = None
    source_url: Any = Field(default=None, alias="sourceUrl")


class ArticlePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str
    date: str
    content: str

    @classmethod
    def from_article(cls, article: ParsedArticle) -> ArticlePayload:
        return cls(title=article.title, date=article.date, content=article.content)

    def to_article(self) -> ParsedArticle:
        return ParsedArticle(title=self.title, date=self.date, content=self.content)


class PipelineRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Any = None
    article: ArticlePayload | None = None


class TransformResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    result: str


class PipelineResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    result: str
    article: ArticlePayload | None = None


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    stage: ErrorStage
