import logging
import re
from typing import Iterator, NamedTuple, Optional

from .models import EventData, SearchFilter

logger = logging.getLogger(__name__)

SUBSCRIPTION_KEYWORD = "subscription"
WILDCARD = "*"

# Characters ignored when deciding whether a filter is just the wildcard
_WILDCARD_NOISE_RE = re.compile(r"[\s\"':]")

_TOKEN_RE = re.compile(
    r"""
    (?P<negated>-)?
    (?P<keyword>[^\s:"']+):
    (?P<value>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|\S*)
    |
    (?P<text>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*'|\S+)
    """,
    re.VERBOSE,
)
_ESCAPE_RE = re.compile(r"\\(.)")


class FilterToken(NamedTuple):
    keyword: Optional[str]
    value: str
    negated: bool = False


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return _ESCAPE_RE.sub(r"\1", value[1:-1])
    return value


def tokenize_filter(filter_text: str) -> Iterator[FilterToken]:
    """Splits a filter into keyword:value tokens and free-text tokens."""
    for match in _TOKEN_RE.finditer(filter_text):
        if match.group("keyword") is not None:
            yield FilterToken(
                keyword=match.group("keyword"),
                value=_unquote(match.group("value")),
                negated=match.group("negated") is not None,
            )
        else:
            yield FilterToken(keyword=None, value=_unquote(match.group("text")))


def parse_search_filter(filter_text: Optional[str]) -> SearchFilter:
    """
    Parses a rule's raw filter string into a SearchFilter.

    Never raises: an empty or wildcard filter gives an empty SearchFilter
    (which matches everything), and anything that isn't a recognised
    keyword token is ignored.
    """
    result = SearchFilter()
    if not filter_text or _WILDCARD_NOISE_RE.sub("", filter_text) in ("", WILDCARD):
        return result

    for token in tokenize_filter(filter_text):
        if token.keyword is None:
            logger.debug(f"Ignoring free text '{token.value}' in filter '{filter_text}'.")
            continue
        if token.negated or not token.value:
            logger.debug(
                f"Ignoring {'negated' if token.negated else 'empty'} keyword '{token.keyword}' in filter '{filter_text}'."
            )
            continue
        if token.keyword == SUBSCRIPTION_KEYWORD:
            result.subscription_filter = token.value  # Last occurrence wins
        else:
            logger.debug(f"Ignoring unknown keyword '{token.keyword}' in filter '{filter_text}'.")

    return result


def is_valid_subscription(subscription_filter: str, event: EventData) -> bool:
    if not event.subscription:
        return False
    return subscription_filter == WILDCARD or event.subscription == subscription_filter


def is_valid_data(filter_text: Optional[str], event: EventData) -> bool:
    """Checks whether the event satisfies a rule's filter."""
    search_filter = parse_search_filter(filter_text)

    if search_filter.subscription_filter:
        return is_valid_subscription(search_filter.subscription_filter, event)

    return True
