"""
Bounded retry HTTP transport.

Every collector reaches upstream providers through ``fetch_with_retry``:
each attempt has its own timeout, only transient failures are retried,
and the delay between attempts grows according to the policy up to a cap.
Exhausting the attempts raises a single FetchError.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, Field, field_validator

from ..errors import ErrorKind, FetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Accept": "application/json"}
REDACTED = "***"


class FetchTarget(BaseModel):
    """
    What to request.
    """

    url: str = Field(..., description="Absolute URL")
    method: str = Field(default="GET", description="HTTP method")
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers")
    params: Optional[Dict[str, Any]] = Field(None, description="Query parameters")
    json_body: Optional[Any] = Field(None, description="JSON request body")
    data: Optional[Any] = Field(None, description="Raw request body")
    secrets: List[str] = Field(
        default_factory=list,
        repr=False,
        description="Credential values masked in logs and error messages",
    )

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.upper()

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            if secret:
                text = text.replace(secret, REDACTED)
        return text

    @property
    def display_url(self) -> str:
        """URL safe to log."""
        return self.redact(self.url)


class RetryPolicy(BaseModel):
    """
    How hard to try.

    ``retries`` counts the attempts after the first one, so a policy with
    ``retries=2`` makes at most three attempts.
    """

    timeout_seconds: float = Field(default=30.0, gt=0, description="Per attempt")
    retries: int = Field(default=2, ge=0, description="Retries after first attempt")
    backoff: str = Field(default="exponential", description="'fixed' or 'exponential'")
    base_delay: float = Field(default=1.0, ge=0, description="First backoff delay")
    max_delay: float = Field(default=30.0, ge=0, description="Backoff delay cap")
    jitter: float = Field(
        default=0.0, ge=0, le=1, description="Fraction of the delay randomised away"
    )

    model_config = {"frozen": True}

    @field_validator("backoff")
    @classmethod
    def check_backoff(cls, v: str) -> str:
        if v not in ("fixed", "exponential"):
            raise ValueError(f"Unknown backoff policy: {v}")
        return v

    @classmethod
    def from_millis(cls, timeout_ms: int, retries: int = 2, **kwargs) -> "RetryPolicy":
        return cls(timeout_seconds=timeout_ms / 1000.0, retries=retries, **kwargs)

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Delay to wait after failed attempt number ``attempt`` (1-based).
        """
        if self.backoff == "fixed":
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** (attempt - 1))
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay -= delay * self.jitter * (rng or random).random()
        return delay


def classify_status(status: int) -> Optional[ErrorKind]:
    """Map an HTTP status code to an error kind, None for success."""
    if status < 400:
        return None
    if status == 429 or status >= 500:
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.PERMANENT_UPSTREAM


# A body cut off mid-download (connection reset) surfaces as ChunkedEncodingError
_TRANSIENT_EXCEPTIONS = (
    requests.Timeout,
    requests.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
)


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map a requests exception to an error kind."""
    if isinstance(exc, _TRANSIENT_EXCEPTIONS):
        return ErrorKind.TRANSIENT_NETWORK
    # Malformed URLs, bad schemas and other request construction problems
    return ErrorKind.PERMANENT_UPSTREAM


def fetch_with_retry(
    target: FetchTarget,
    policy: RetryPolicy,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
    stream: bool = False,
) -> requests.Response:
    """
    Perform the request described by target under the given policy.

    Args:
        target: Request description
        policy: Timeout, retry and backoff policy
        session: Session to send through, a throwaway one if not given
        sleep: Delay function, injectable for tests
        stream: Defer downloading the body

    Returns:
        The successful response

    Raises:
        FetchError: When a permanent failure occurs or attempts run out
    """
    http = session or requests.Session()
    last_error: Optional[BaseException] = None
    last_status: Optional[int] = None
    kind = ErrorKind.TRANSIENT_NETWORK
    attempt = 0

    try:
        while attempt < policy.max_attempts:
            attempt += 1
            started = time.monotonic()
            try:
                response = http.request(
                    target.method,
                    target.url,
                    headers=target.headers or None,
                    params=target.params,
                    json=target.json_body,
                    data=target.data,
                    timeout=policy.timeout_seconds,
                    stream=stream,
                )
            except requests.RequestException as e:
                last_error, last_status = e, None
                kind = classify_exception(e)
                outcome = type(e).__name__
            else:
                last_status = response.status_code
                kind = classify_status(response.status_code)
                if kind is None:
                    logger.debug(
                        "fetch url=%s attempt=%d outcome=ok status=%d elapsed_ms=%d",
                        target.display_url,
                        attempt,
                        response.status_code,
                        (time.monotonic() - started) * 1000,
                    )
                    return response
                last_error = requests.HTTPError(
                    f"HTTP {response.status_code} {response.reason}",
                    response=response,
                )
                outcome = f"http_{response.status_code}"
                response.close()

            elapsed_ms = (time.monotonic() - started) * 1000
            retrying = (
                kind is ErrorKind.TRANSIENT_NETWORK and attempt < policy.max_attempts
            )
            logger.warning(
                "fetch url=%s attempt=%d/%d outcome=%s kind=%s elapsed_ms=%d%s",
                target.display_url,
                attempt,
                policy.max_attempts,
                outcome,
                kind.value,
                elapsed_ms,
                " retrying" if retrying else "",
            )
            if not retrying:
                break
            sleep(policy.delay_for(attempt))
    finally:
        if session is None:
            http.close()

    raise FetchError(
        target.redact(
            f"{target.method} {target.url} failed after {attempt} attempt(s): "
            f"{last_error}"
        ),
        kind=kind,
        url=target.display_url,
        attempts=attempt,
        status=last_status,
        last_error=last_error,
    )


def fetch_json(
    target: FetchTarget,
    policy: RetryPolicy,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """
    Fetch and decode a JSON body.

    A body that is not valid JSON is a permanent upstream failure.
    """
    response = fetch_with_retry(target, policy, session=session, sleep=sleep)
    try:
        return response.json()
    except ValueError as e:
        raise FetchError(
            target.redact(f"Malformed JSON body from {target.url}: {e}"),
            kind=ErrorKind.PERMANENT_UPSTREAM,
            url=target.display_url,
            status=response.status_code,
            last_error=e,
        ) from e
