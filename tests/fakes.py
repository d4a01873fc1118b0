from __future__ import annotations

from referent.services.article_fetcher import FetchFailure, RawDocument
from referent.services.stage_errors import PipelineStage
from referent.services.transform_client import CapabilityResponse

ARTICLE_URL = "https://example.com/blog/quiet-tools"

ARTICLE_HTML = """
<html>
  <head><title>Quiet Tools | Example Blog</title></head>
  <body>
    <nav>Home Archive About Subscribe</nav>
    <article>
      <h1>Quiet Tools for Loud Teams</h1>
      <time datetime="2024-03-05T09:30:00Z">March 5, 2024</time>
      <p>Teams that adopt fewer, quieter tools tend to ship more predictable work.</p>
      <p>This essay looks at three habits that keep a small engineering group focused.</p>
      <script>trackPageView();</script>
    </article>
    <footer>Copyright Example Blog</footer>
  </body>
</html>
""".strip()


class FakeFetcher:
    def __init__(self, result: RawDocument | FetchFailure | None = None) -> None:
        self.result = result if result is not None else html_document(ARTICLE_HTML)
        self.calls: list[str] = []

    def fetch(self, url: str) -> RawDocument | FetchFailure:
        self.calls.append(url)
        return self.result


class FakeTransformClient:
    def __init__(
        self,
        response: CapabilityResponse | None = None,
        *,
        configured: bool = True,
    ) -> None:
        self.response = response if response is not None else CapabilityResponse(text="готово")
        self._configured = configured
        self.calls: list[dict[str, object]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def generate(
        self,
        stage: PipelineStage,
        *,
        content: str,
        title: str | None = None,
        source_url: str | None = None,
    ) -> CapabilityResponse:
        self.calls.append(
            {"stage": stage, "content": content, "title": title, "source_url": source_url}
        )
        return self.response


def html_document(html: str, *, url: str = ARTICLE_URL) -> RawDocument:
    return RawDocument(url=url, status_code=200, body=html.encode("utf-8"), charset="utf-8")
