from __future__ import annotations

import logging
from dataclasses import dataclass
from http.client import HTTPException
from typing import Literal
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from referent.config import DEFAULT_USER_AGENT

LOGGER = logging.getLogger("referent.fetcher")


@dataclass(frozen=True)
class RawDocument:
    """Response body of a successful fetch. `url` is the address after redirects."""

    url: str
    status_code: int
    body: bytes
    charset: str | None

    @property
    def text(self) -> str:
        return self.body.decode(self.charset or "utf-8", errors="replace")


@dataclass(frozen=True)
class FetchFailure:
    url: str
    kind: Literal["http", "network"]
    status_code: int | None
    reason: str


class ArticleFetcher:
    """Single timed GET against an article URL. Failures are returned, not raised."""

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._timeout_seconds = max(1.0, timeout_seconds)
        self._user_agent = user_agent.strip() or DEFAULT_USER_AGENT

    def fetch(self, url: str) -> RawDocument | FetchFailure:
        if not url:
            raise ValueError("url must be a non-empty string")
        try:
            request = Request(
                url,
                headers={
                    "Accept": "text/html,application/xhtml+xml",
                    "User-Agent": self._user_agent,
                },
                method="GET",
            )
            with urlopen(request, timeout=self._timeout_seconds) as response:
                charset = response.headers.get_content_charset()
                body = response.read()
                status_code = int(getattr(response, "status", 200) or 200)
                final_url = response.geturl() or url
        except HTTPError as exc:
            LOGGER.info("article fetch rejected url=%s status=%s", url, exc.code)
            return FetchFailure(
                url=url,
                kind="http",
                status_code=int(exc.code),
                reason=str(exc.reason or f"http_{exc.code}"),
            )
        except (URLError, TimeoutError, OSError, HTTPException, ValueError) as exc:
            # ValueError covers malformed URLs rejected by urllib itself.
            LOGGER.info(
                "article fetch network failure url=%s error_type=%s",
                url,
                type(exc).__name__,
            )
            return FetchFailure(
                url=url,
                kind="network",
                status_code=None,
                reason=f"network_error:{type(exc).__name__}",
            )

        if not 200 <= status_code < 300:
            return FetchFailure(
                url=url,
                kind="http",
                status_code=status_code,
                reason=f"http_{status_code}",
            )
        LOGGER.debug(
            "article fetched url=%s final_url=%s status=%s bytes=%s",
            url,
            final_url,
            status_code,
            len(body),
        )
        return RawDocument(url=final_url, status_code=status_code, body=body, charset=charset)
