import logging
from typing import Any, Dict, List, Optional

import httpx

from rule_handler.core.config import HandlerSettings
from .exceptions import ApiError, InvalidParameterError

logger = logging.getLogger(__name__)


ENABLED_RULES_QUERY = """query {
  rules(enabled: true) {
    ... on RulesError {
      errorCodes
    }
    ... on RulesSuccess {
      rules {
        id
        name
        filter
        description
        enabled
        createdAt
        updatedAt
        actions {
          type
          params
        }
      }
    }
  }
}"""

SET_LABELS_MUTATION = """mutation SetLabels($input: SetLabelsInput!) {
  setLabels(input: $input) {
    ... on SetLabelsSuccess {
      labels {
        id
        name
      }
    }
    ... on SetLabelsError {
      errorCodes
    }
  }
}"""

SET_LINK_ARCHIVED_MUTATION = """mutation SetLinkArchived($input: ArchiveLinkInput!) {
  setLinkArchived(input: $input) {
    ... on ArchiveLinkSuccess {
      linkId
      message
    }
    ... on ArchiveLinkError {
      message
      errorCodes
    }
  }
}"""

SAVE_READING_PROGRESS_MUTATION = """mutation SaveArticleReadingProgress($input: SaveArticleReadingProgressInput!) {
  saveArticleReadingProgress(input: $input) {
    ... on SaveArticleReadingProgressSuccess {
      updatedArticle {
        id
      }
    }
    ... on SaveArticleReadingProgressError {
      errorCodes
    }
  }
}"""

SEND_NOTIFICATION_MUTATION = """mutation SendNotification($input: SendNotificationInput!) {
  sendNotification(input: $input) {
    ... on SendNotificationSuccess {
      success
    }
    ... on SendNotificationError {
      errorCodes
    }
  }
}"""


# --- Transport ---
def _build_client(settings: HandlerSettings) -> httpx.Client:
    """Builds the HTTP client for one request. Patched in tests."""
    return httpx.Client(timeout=httpx.Timeout(settings.request_timeout))


def execute_query(
    settings: HandlerSettings,
    auth_token: str,
    query: str,
    variables: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Posts a GraphQL document to <api_endpoint>/graphql, authenticated with the
    auth cookie, and returns the 'data' member of the response.
    Raises ApiError on transport/HTTP failures, non-JSON bodies, or GraphQL errors.
    """
    if not auth_token:
        raise InvalidParameterError("An auth token is required for API calls.")

    body: Dict[str, Any] = {"query": query}
    if variables is not None:
        body["variables"] = variables
    headers = {
        "Cookie": f"auth={auth_token};",
        "Content-Type": "application/json",
    }

    try:
        with _build_client(settings) as client:
            response = client.post(settings.graphql_url, json=body, headers=headers)
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as e:
        logger.error(
            f"API error from {settings.graphql_url}: {e.response.status_code} - {e.response.text}",
            exc_info=True,
        )
        raise ApiError(
            f"API request failed with status {e.response.status_code}", original_exception=e
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"Transport error calling {settings.graphql_url}: {e}", exc_info=True)
        raise ApiError(f"Could not reach the API: {e}", original_exception=e)
    except ValueError as e:  # Body wasn't JSON
        logger.error(f"Invalid JSON returned by {settings.graphql_url}: {e}", exc_info=True)
        raise ApiError("API returned a non-JSON response", original_exception=e)

    if not isinstance(payload, dict):
        raise ApiError(f"Unexpected API response shape: {payload!r}")
    if payload.get("errors"):
        messages = [err.get("message", str(err)) for err in payload["errors"] if isinstance(err, dict)]
        logger.error(f"GraphQL errors returned: {payload['errors']}")
        raise ApiError(f"GraphQL errors: {'; '.join(messages) or payload['errors']}")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise ApiError("API response contained no data.")
    return data


def _run_mutation(
    settings: HandlerSettings,
    auth_token: str,
    mutation: str,
    field_name: str,
    input_data: Dict[str, Any],
) -> Dict[str, Any]:
    data = execute_query(settings, auth_token, mutation, {"input": input_data})
    result = data.get(field_name)
    if not isinstance(result, dict):
        raise ApiError(f"'{field_name}' missing from API response.")
    if result.get("errorCodes"):
        raise ApiError(f"'{field_name}' failed with error codes {result['errorCodes']}")
    return result


# --- Rule Store ---
def fetch_enabled_rules(settings: HandlerSettings, auth_token: str) -> List[Dict[str, Any]]:
    """Returns the raw enabled rule records, in store order."""
    data = execute_query(settings, auth_token, ENABLED_RULES_QUERY)
    result = data.get("rules")
    if not isinstance(result, dict):
        raise ApiError("'rules' missing from API response.")
    if "errorCodes" in result:
        raise ApiError(f"Rules query failed with error codes {result['errorCodes']}")
    rules = result.get("rules")
    if not isinstance(rules, list):
        raise ApiError("Rules query returned no rule list.")
    logger.debug(f"API: fetched {len(rules)} enabled rules.")
    return rules


# --- Page actions ---
def add_labels(
    settings: HandlerSettings, auth_token: str, page_id: str, label_names: List[str]
) -> Dict[str, Any]:
    """Sets the named labels on a page."""
    if not page_id or not label_names:
        raise InvalidParameterError("add_labels requires a page id and at least one label name.")
    logger.info(f"API: Setting labels {label_names} on page {page_id}.")
    return _run_mutation(
        settings,
        auth_token,
        SET_LABELS_MUTATION,
        "setLabels",
        {"pageId": page_id, "labels": [{"name": name} for name in label_names]},
    )


def archive_page(settings: HandlerSettings, auth_token: str, page_id: str) -> Dict[str, Any]:
    if not page_id:
        raise InvalidParameterError("archive_page requires a page id.")
    logger.info(f"API: Archiving page {page_id}.")
    return _run_mutation(
        settings,
        auth_token,
        SET_LINK_ARCHIVED_MUTATION,
        "setLinkArchived",
        {"linkId": page_id, "archived": True},
    )


def mark_page_as_read(settings: HandlerSettings, auth_token: str, page_id: str) -> Dict[str, Any]:
    """Marks a page as read by saving full reading progress."""
    if not page_id:
        raise InvalidParameterError("mark_page_as_read requires a page id.")
    logger.info(f"API: Marking page {page_id} as read.")
    return _run_mutation(
        settings,
        auth_token,
        SAVE_READING_PROGRESS_MUTATION,
        "saveArticleReadingProgress",
        {"id": page_id, "readingProgressPercent": 100, "readingProgressAnchorIndex": 0},
    )


def send_notification(settings: HandlerSettings, auth_token: str, message: str) -> Dict[str, Any]:
    logger.info(f"API: Sending notification '{message}'.")
    return _run_mutation(
        settings,
        auth_token,
        SEND_NOTIFICATION_MUTATION,
        "sendNotification",
        {"title": settings.notification_title, "body": message},
    )
