import asyncio
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from report_engine.core.exceptions import APIClientError, APITimeoutError
from report_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class BaseLLMClient:
    """Base client for text-generation API interactions.

    Handles common logic for HTTP requests, retries, timeout management,
    and error logging. Streaming requests are retried only until the first
    line has been received; a failure after that is raised to the caller.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: int = 2,
        auth_header: str = "Authorization",
        auth_prefix: str = "Bearer ",
    ):
        """Initialize the client.

        Args:
            api_key: API key for authentication
            base_url: Endpoint URL
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts
            retry_delay: Base delay for exponential backoff
            auth_header: Header carrying the API key
            auth_prefix: Prefix placed before the key in that header
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.auth_header = auth_header
        self.auth_prefix = auth_prefix
        self.logger = LOGGER

    def _default_headers(self) -> Dict[str, str]:
        return {
            self.auth_header: f"{self.auth_prefix}{self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = self._default_headers()
        if headers:
            merged.update(headers)
        return merged

    async def call_api(
        self,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload with retry logic.

        Args:
            payload: JSON payload
            headers: Additional headers

        Returns:
            Parsed JSON response

        Raises:
            APIClientError: If the API call fails after retries
            APITimeoutError: If the API call times out after retries
        """
        url = self.base_url
        request_headers = self._build_headers(headers)

        self.logger.debug(
            f"Calling generation API: {url}",
            extra={"timeout": self.timeout},
        )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    response = await client.post(url, headers=request_headers, json=payload)
                    response.raise_for_status()
                    return response.json()

                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, url)

                except TimeoutException as e:
                    await self._handle_timeout_error(e, attempt, url)

                except Exception as e:
                    await self._handle_generic_error(e, attempt, url)

        raise APIClientError(f"Failed to call API {url} after {self.max_retries} attempts")

    async def stream_lines(
        self,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> AsyncIterator[str]:
        """POST a JSON payload and yield the response body line by line.

        Raises:
            APIClientError: If the request fails after retries or the stream breaks
            APITimeoutError: If the request times out after retries
        """
        url = self.base_url
        request_headers = self._build_headers(headers)
        started = False

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    async with client.stream("POST", url, headers=request_headers, json=payload) as response:
                        if response.status_code >= 400:
                            await response.aread()
                            response.raise_for_status()
                        async for line in response.aiter_lines():
                            started = True
                            yield line
                    return

                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, url)

                except TimeoutException as e:
                    if started:
                        raise APITimeoutError("Stream timed out mid-response", e) from e
                    await self._handle_timeout_error(e, attempt, url)

                except Exception as e:
                    if started:
                        raise APIClientError(f"Stream interrupted: {e}", e) from e
                    await self._handle_generic_error(e, attempt, url)

        raise APIClientError(f"Failed to stream from {url} after {self.max_retries} attempts")

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int, url: str):
        """Handle HTTP status errors."""
        status_code = error.response.status_code

        try:
            error_body = error.response.text
        except Exception:
            error_body = "Could not read response body"

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries})",
            extra={
                "url": url,
                "status_code": status_code,
                "error_body": error_body[:500],
            },
        )

        # Client errors other than rate limiting are not retried
        if 400 <= status_code < 500 and status_code != 429:
            raise APIClientError(f"API Client Error {status_code}: {error_body}", error) from error

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API HTTP Error {status_code} after retries", error) from error

    async def _handle_timeout_error(self, error: TimeoutException, attempt: int, url: str):
        """Handle timeout errors."""
        self.logger.warning(
            f"API Timeout (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url},
        )

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APITimeoutError(f"API Timeout after {self.max_retries} attempts", error) from error

    async def _handle_generic_error(self, error: Exception, attempt: int, url: str):
        """Handle generic errors."""
        self.logger.warning(
            f"API Generic Error (Attempt {attempt + 1}/{self.max_retries})",
            extra={"url": url, "error": str(error)},
        )

        if attempt < self.max_retries - 1:
            await self._wait_before_retry(attempt)
        else:
            raise APIClientError(f"API Error: {str(error)}", error) from error

    async def _wait_before_retry(self, attempt: int):
        """Exponential backoff wait."""
        wait_time = self.retry_delay * (2 ** attempt)
        await asyncio.sleep(wait_time)
