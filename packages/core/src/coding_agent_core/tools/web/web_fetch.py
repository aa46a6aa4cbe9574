import logging

import html2text
import httpx
from pydantic import BaseModel, Field

from coding_agent_core.config.config import Config
from coding_agent_core.core.cancellation import CancelSignal
from coding_agent_core.tools.base.tool_base import (
    BaseTool,
    OutputUpdateCallback,
    ToolError,
    ToolResult,
)
from coding_agent_core.tools.common import ToolInfoConfirmationDetails
from coding_agent_core.utils.fetch import (
    FetchError,
    extract_urls,
    fetch_with_timeout,
)

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 100000


class WebFetchToolParams(BaseModel):
    prompt: str = Field(
        ...,
        description="A prompt containing up to 20 URL(s) (starting with http:// or https://) to fetch.",
    )


def _to_raw_github_url(url: str) -> str:
    if "github.com" in url and "/blob/" in url:
        return url.replace("github.com", "raw.githubusercontent.com").replace(
            "/blob/", "/"
        )
    return url


def _html_to_text(html: str) -> str:
    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.body_width = 0
    return converter.handle(html)


class WebFetchTool(BaseTool[WebFetchToolParams, ToolResult]):
    """Fetches the URLs named in a prompt and returns their text content."""

    NAME = "web_fetch"
    params_model = WebFetchToolParams

    def __init__(self, config: Config, client: httpx.AsyncClient | None = None):
        super().__init__(
            name=self.NAME,
            display_name="WebFetch",
            description="Fetches content from URL(s) embedded in a prompt and returns it as text.",
            parameter_schema=WebFetchToolParams.model_json_schema(),
        )
        self.config = config
        self.client = client

    def validate_tool_params(self, params: WebFetchToolParams) -> str | None:
        if not params.prompt.strip():
            return "The 'prompt' parameter cannot be empty and must contain URL(s) and instructions."
        if not extract_urls(params.prompt):
            return "The 'prompt' must contain at least one valid URL (starting with http:// or https://)."
        return None

    def get_description(self, params: WebFetchToolParams) -> str:
        prompt = params.prompt
        if len(prompt) > 100:
            prompt = prompt[:97] + "..."
        return f'Processing URLs and instructions from prompt: "{prompt}"'

    async def should_confirm_execute(
        self,
        params: WebFetchToolParams,
        abort_signal: CancelSignal | None = None,
    ) -> ToolInfoConfirmationDetails | bool:
        urls = [_to_raw_github_url(url) for url in extract_urls(params.prompt)]
        return ToolInfoConfirmationDetails(
            title="Confirm Web Fetch",
            prompt=params.prompt,
            urls=urls,
        )

    async def execute(
        self,
        params: WebFetchToolParams,
        signal: CancelSignal | None = None,
        update_output: OutputUpdateCallback | None = None,
    ) -> ToolResult:
        urls = [_to_raw_github_url(url) for url in extract_urls(params.prompt)]
        timeout = self.config.web_fetch_timeout

        sections = []
        failures = []
        for url in urls:
            if signal is not None and signal.is_set():
                break
            try:
                response = await fetch_with_timeout(url, timeout, self.client)
            except FetchError as e:
                logger.debug(f"Fetching {url} failed: {e}")
                failures.append(f"{url}: {e}")
                continue
            content_type = response.headers.get("content-type", "")
            text = response.text
            if "text/html" in content_type or not content_type:
                text = _html_to_text(text)
            sections.append(f"Content from {url}:\n{text[:MAX_CONTENT_LENGTH]}")

        if not sections:
            message = "Error during fetch: " + "; ".join(failures or ["no URL fetched"])
            return ToolResult(
                llm_content=message,
                return_display=message,
                error=ToolError(message=message),
            )

        llm_content = "\n\n".join(sections)
        if failures:
            llm_content += "\n\nFailed to fetch:\n" + "\n".join(failures)
        return ToolResult(
            llm_content=llm_content,
            return_display=f"Fetched content from {len(sections)} URL(s).",
        )
