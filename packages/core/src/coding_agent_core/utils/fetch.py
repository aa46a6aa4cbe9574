import re

import httpx

URL_RE = re.compile(r"https?://[^\s<>\"')\]]+")


class FetchError(Exception):
    """Raised when a URL cannot be fetched."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


def extract_urls(text: str) -> list[str]:
    return URL_RE.findall(text)


async def fetch_with_timeout(
    url: str, timeout: float, client: httpx.AsyncClient | None = None
) -> httpx.Response:
    """
    Fetches a URL, raising FetchError on timeouts, transport errors and
    non-success status codes.
    """
    try:
        if client is not None:
            response = await client.get(url, timeout=timeout, follow_redirects=True)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as owned:
                response = await owned.get(url, timeout=timeout)
        response.raise_for_status()
        return response
    except httpx.TimeoutException:
        raise FetchError(
            f"Request timed out after {timeout}s", "ETIMEDOUT"
        ) from None
    except httpx.HTTPStatusError as e:
        raise FetchError(
            f"Request failed with status code {e.response.status_code} "
            f"{e.response.reason_phrase}",
            str(e.response.status_code),
        ) from e
    except httpx.RequestError as e:
        raise FetchError(f"Request failed: {e}") from e
