"""HTTP fetching with retry and failure classification for feed sources."""
import logging
import time
from typing import Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

USER_AGENT = 'EventCatalogSync/1.0 (+calendar bot)'


class FeedFetchError(Exception):
    """Base class for feed fetch failures."""

    transient = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FeedFetchError):
    """Timeout, dropped connection, throttling or server error."""

    transient = True


class PermanentFetchError(FeedFetchError):
    """Missing resource, rejected request or malformed document."""


class DeadlineExceededError(TransientFetchError):
    """The source's fetch deadline passed before the request could complete."""


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class FeedFetcher:
    """Fetches feed documents with bounded retries."""

    def __init__(
        self,
        timeout: int = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts per request for transient failures (default: 3)
            base_delay: First backoff delay in seconds, doubled per attempt
            session: Optional requests session to reuse connections
            sleep: Sleep function, replaceable in tests
            clock: Monotonic clock that deadlines are measured against
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = session or requests.Session()
        self.sleep = sleep
        self.clock = clock

    def remaining(self, deadline: Optional[float]) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if deadline is None:
            return None
        return deadline - self.clock()

    def get(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        accept: str = '*/*',
        deadline: Optional[float] = None,
    ) -> requests.Response:
        """
        GET a URL, retrying transient failures with exponential backoff.

        Args:
            url: Absolute URL (webcal:// is fetched over https)
            params: Optional query parameters
            accept: Accept header value
            deadline: Clock value after which no request or retry is started;
                the request timeout is shortened to fit before it

        Returns:
            Successful response

        Raises:
            TransientFetchError: If every attempt failed transiently
            DeadlineExceededError: If the deadline passed first
            PermanentFetchError: On a non-retryable HTTP status
        """
        if url.startswith('webcal://'):
            url = 'https://' + url[len('webcal://'):]

        headers = {'Accept': accept, 'User-Agent': USER_AGENT}
        last_error = None

        for attempt in range(self.max_retries):
            remaining = self.remaining(deadline)
            if remaining is not None and remaining <= 0:
                raise DeadlineExceededError(f"Fetch deadline passed before requesting {url}")
            timeout = self.timeout if remaining is None else min(self.timeout, remaining)

            try:
                logger.debug(f"GET {url} (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=timeout
                )
            except (requests.Timeout, requests.ConnectionError) as e:
                last_error = TransientFetchError(f"{type(e).__name__}: {e}")
            except requests.RequestException as e:
                raise PermanentFetchError(f"Request to {url} failed: {e}") from e
            else:
                if response.ok:
                    return response
                message = f"HTTP {response.status_code} from {url}"
                if not is_transient_status(response.status_code):
                    raise PermanentFetchError(message, status_code=response.status_code)
                last_error = TransientFetchError(message, status_code=response.status_code)

            if attempt < self.max_retries - 1:
                delay = self.base_delay * (2 ** attempt)
                remaining = self.remaining(deadline)
                if remaining is not None and delay >= remaining:
                    logger.warning(f"No time left to retry {url} before the fetch deadline: {last_error}")
                    raise last_error
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.max_retries}): "
                    f"{last_error}. Retrying in {delay} seconds..."
                )
                self.sleep(delay)

        logger.error(
            f"All {self.max_retries} retry attempts failed. Last error: {last_error}"
        )
        raise last_error

    def get_text(self, url: str, params: Optional[Dict[str, str]] = None, accept: str = '*/*',
                 deadline: Optional[float] = None) -> str:
        return self.get(url, params=params, accept=accept, deadline=deadline).text

    def get_json(self, url: str, params: Optional[Dict[str, str]] = None, deadline: Optional[float] = None):
        response = self.get(url, params=params, accept='application/json', deadline=deadline)
        try:
            return response.json()
        except ValueError as e:
            raise PermanentFetchError(f"Malformed JSON document from {url}: {e}") from e
