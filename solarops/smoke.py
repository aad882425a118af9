"""
Smoke check for the deployed application behind its LoadBalancer.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Any

import requests

logger = logging.getLogger(__name__)


@dataclass
class SmokeResult:
    """Result of a smoke check."""
    success: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


def check_url(
    url: str,
    retries: int = 12,
    delay: float = 10,
    expect: int = 200,
    timeout: float = 10,
    sleep: Callable[[float], None] = time.sleep,
) -> SmokeResult:
    """
    Poll a URL until it answers with the expected status.

    A fresh ELB hostname can take minutes to resolve, so connection errors
    count as retryable.

    Args:
        url: URL to check
        retries: Maximum number of attempts
        delay: Seconds between attempts
        expect: Expected HTTP status code
        timeout: Per-request timeout in seconds

    Returns:
        SmokeResult with success status and details
    """
    logger.info(f"Smoke checking {url} (expecting status {expect})")
    last_error = None

    for attempt in range(1, retries + 1):
        try:
            response = requests.get(url, timeout=timeout)
            if response.status_code == expect:
                return SmokeResult(True, f"{url} returned {expect}", {"attempts": attempt})
            last_error = f"HTTP {response.status_code}"
        except requests.RequestException as e:
            last_error = str(e)

        logger.debug(f"Attempt {attempt}/{retries} for {url} failed: {last_error}")
        if attempt < retries:
            sleep(delay)

    return SmokeResult(False, f"{url} not ready after {retries} attempts", {
        "attempts": retries,
        "last_error": last_error,
    })
