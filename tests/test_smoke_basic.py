"""
Basic tests for the post-deploy smoke check.
"""

import requests
from unittest.mock import Mock, patch

from solarops.smoke import check_url


@patch("solarops.smoke.requests.get")
def test_succeeds_after_dns_lag(mock_get):
    mock_get.side_effect = [
        requests.ConnectionError("Name or service not known"),
        Mock(status_code=503),
        Mock(status_code=200),
    ]
    sleeps = []

    result = check_url("http://abc.elb.amazonaws.com", retries=5, delay=2, sleep=sleeps.append)

    assert result.success
    assert result.details["attempts"] == 3
    assert sleeps == [2, 2]


@patch("solarops.smoke.requests.get")
def test_gives_up(mock_get):
    mock_get.return_value = Mock(status_code=502)
    sleeps = []

    result = check_url("http://abc.elb.amazonaws.com", retries=3, delay=1, sleep=sleeps.append)

    assert not result.success
    assert result.details == {"attempts": 3, "last_error": "HTTP 502"}
    assert len(sleeps) == 2
