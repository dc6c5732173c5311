"""Decide which tests target a page URL."""
import re
from typing import Iterable, List

import structlog

from splitlab.models.ab_test import ABTest, UrlMatchType

logger = structlog.get_logger()


def pattern_to_regex(pattern: str) -> str:
    """Translate a wildcard pattern (`*` any run, `?` one char) to a regex for fullmatch."""
    escaped = re.escape(pattern)
    return escaped.replace(r"\*", ".*").replace(r"\?", ".")


def check_url_match(test_url: str, current_url: str, match_type: UrlMatchType) -> bool:
    """
    Check whether a page URL is targeted by a test URL.

    Args:
        test_url: URL, wildcard pattern or regex stored on the test
        current_url: URL of the page being loaded
        match_type: EXACT, PATTERN or REGEX

    Returns:
        True if the page belongs to the test. An invalid regex never matches.
    """
    match_type = UrlMatchType(match_type)

    if match_type == UrlMatchType.EXACT:
        return test_url == current_url

    if match_type == UrlMatchType.PATTERN:
        return re.fullmatch(pattern_to_regex(test_url), current_url) is not None

    try:
        return re.search(test_url, current_url) is not None
    except re.error as e:
        logger.warning("url_pattern_invalid", pattern=test_url, error=str(e))
        return False


def find_matching_tests(tests: Iterable[ABTest], current_url: str) -> List[ABTest]:
    """Tests whose url targets current_url, in the given order."""
    return [
        test for test in tests
        if check_url_match(test.url, current_url, test.url_match_type)
    ]
