# rule_handler/core_api/rules_api_service.py
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from rule_handler.core.config import HandlerSettings
from rule_handler.features.rule_management.models import (
    EventData,
    Rule,
    RuleAction,
    RuleActionType,
)
from rule_handler.features.rule_management.service import is_valid_data
from rule_handler.core_api import auth_service
from rule_handler.core_api import graphql_api_service as graphql_api_helpers
from .exceptions import (
    InvalidParameterError,
    RuleHandlerError,
    RuleStoreError,
)

logger = logging.getLogger(__name__)

TokenIssuer = Callable[[str, str], str]

ACTION_EXECUTED = "executed"
ACTION_SKIPPED = "skipped"


# --- Rule Store ---
def get_enabled_rules(
    user_id: str,
    settings: HandlerSettings,
    api_service: Any = graphql_api_helpers,
    token_issuer: TokenIssuer = auth_service.get_auth_token,
) -> List[Rule]:
    """
    Fetches the user's enabled rules in store order.
    Raises RuleStoreError if the token can't be issued, the query fails, or a
    returned record doesn't validate.
    """
    try:
        auth_token = token_issuer(user_id, settings.jwt_secret)
        raw_rules = api_service.fetch_enabled_rules(settings, auth_token)
    except RuleHandlerError as e:
        logger.error(f"Cannot load enabled rules for user {user_id}: {e}", exc_info=True)
        raise RuleStoreError(f"Failed to fetch enabled rules: {e}", original_exception=e)

    rules: List[Rule] = []
    for i, rule_dict in enumerate(raw_rules):
        try:
            rule = Rule.model_validate(rule_dict)
        except ValidationError as e:
            logger.error(f"Rule #{i+1} from the rule store is malformed: {e.errors()} in {rule_dict}")
            raise RuleStoreError(
                f"Rule store returned a malformed rule at position {i+1}", original_exception=e
            )
        if rule.user_id is None:
            rule.user_id = user_id
        rules.append(rule)

    logger.info(f"Loaded {len(rules)} enabled rules for user {user_id}.")
    return rules


# --- Action dispatch ---
def _add_label(action, event, auth_token, settings, api_service) -> str:
    if not event.id or not action.params:
        logger.warning("invalid data for add label action")
        return ACTION_SKIPPED
    api_service.add_labels(settings, auth_token, event.id, action.params)
    return ACTION_EXECUTED


def _archive(action, event, auth_token, settings, api_service) -> str:
    if not event.id:
        logger.warning("invalid data for archive action")
        return ACTION_SKIPPED
    api_service.archive_page(settings, auth_token, event.id)
    return ACTION_EXECUTED


def _mark_as_read(action, event, auth_token, settings, api_service) -> str:
    if not event.id:
        logger.warning("invalid data for mark as read action")
        return ACTION_SKIPPED
    api_service.mark_page_as_read(settings, auth_token, event.id)
    return ACTION_EXECUTED


def _send_notification(action, event, auth_token, settings, api_service) -> str:
    if not action.params:
        logger.debug("send notification action has no messages, nothing sent")
        return ACTION_SKIPPED
    for message in action.params:
        api_service.send_notification(settings, auth_token, message)
    return ACTION_EXECUTED


ACTION_HANDLERS: Dict[RuleActionType, Callable[..., str]] = {
    RuleActionType.ADD_LABEL: _add_label,
    RuleActionType.ARCHIVE: _archive,
    RuleActionType.MARK_AS_READ: _mark_as_read,
    RuleActionType.SEND_NOTIFICATION: _send_notification,
}


def trigger_action(
    action: RuleAction,
    event: EventData,
    auth_token: str,
    settings: HandlerSettings,
    api_service: Any = graphql_api_helpers,
) -> str:
    """
    Performs one rule action for the event. Returns ACTION_EXECUTED or
    ACTION_SKIPPED (missing page id or params). Remote failures propagate.
    """
    handler = ACTION_HANDLERS.get(action.type)
    if handler is None:
        raise InvalidParameterError(f"No handler for action type '{action.type}'.")
    return handler(action, event, auth_token, settings, api_service)


def _new_summary() -> Dict[str, Any]:
    return {
        "rules_evaluated": 0,
        "rules_matched": [],
        "actions_executed": 0,
        "actions_skipped": 0,
        "cancelled": False,
        "errors": [],
    }


def trigger_actions(
    user_id: str,
    rules: List[Rule],
    event: EventData,
    settings: HandlerSettings,
    api_service: Any = graphql_api_helpers,
    token_issuer: TokenIssuer = auth_service.get_auth_token,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """
    Evaluates each rule against the event in order and runs the actions of
    every matching rule, one at a time and in list order.

    A failing action is logged and recorded in the summary's errors, and the
    remaining actions and rules still run. A rule whose auth token can't be
    issued is skipped. Setting cancel_event stops the loop before the next
    rule or action.

    Returns a summary dictionary.
    """
    summary = _new_summary()

    for rule in rules:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Rule evaluation cancelled.")
            summary["cancelled"] = True
            break

        summary["rules_evaluated"] += 1
        if not is_valid_data(rule.filter, event):
            logger.debug(f"Rule '{rule.name}' (ID: {rule.id}) does not match event {event.id}.")
            continue

        logger.info(f"Event {event.id} MATCHED rule '{rule.name}' (ID: {rule.id})")
        summary["rules_matched"].append(rule.id)

        try:
            auth_token = token_issuer(user_id, settings.jwt_secret)
        except RuleHandlerError as e:
            logger.error(f"Could not issue auth token for rule '{rule.name}': {e}", exc_info=True)
            summary["errors"].append(
                {"rule_id": rule.id, "action": None, "error_type": "AUTH_TOKEN_FAILURE", "details": str(e)}
            )
            continue

        for position, action in enumerate(rule.actions):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Rule evaluation cancelled during rule '{rule.name}'.")
                summary["cancelled"] = True
                break

            action_label = f"{action.type.value}#{position}"
            try:
                outcome = trigger_action(action, event, auth_token, settings, api_service)
            except (RuleHandlerError, httpx.HTTPError) as e:
                logger.error(f"Action {action_label} of rule '{rule.name}' failed: {e}", exc_info=True)
                summary["errors"].append(
                    {
                        "rule_id": rule.id,
                        "action": action_label,
                        "error_type": "ACTION_EXECUTION_API_ERROR",
                        "details": str(e),
                    }
                )
                continue
            except Exception as e:
                logger.error(
                    f"Unexpected error in action {action_label} of rule '{rule.name}': {e}", exc_info=True
                )
                summary["errors"].append(
                    {
                        "rule_id": rule.id,
                        "action": action_label,
                        "error_type": "ACTION_EXECUTION_UNEXPECTED_ERROR",
                        "details": str(e),
                    }
                )
                continue

            if outcome == ACTION_EXECUTED:
                summary["actions_executed"] += 1
            else:
                summary["actions_skipped"] += 1

        if summary["cancelled"]:
            break

    logger.info(f"Rule evaluation finished for event {event.id}. Results: {summary}")
    return summary


def run_rules_for_event(
    user_id: str,
    event: EventData,
    settings: HandlerSettings,
    api_service: Any = graphql_api_helpers,
    token_issuer: TokenIssuer = auth_service.get_auth_token,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """
    Loads the user's enabled rules and triggers the matching ones for the event.
    Raises RuleStoreError if the rules can't be loaded.
    """
    if not user_id:
        raise InvalidParameterError("A user id is required to run rules.")
    logger.info(f"Running rules for user {user_id}, event {event.id} (subscription: {event.subscription}).")
    rules = get_enabled_rules(user_id, settings, api_service=api_service, token_issuer=token_issuer)
    return trigger_actions(
        user_id,
        rules,
        event,
        settings,
        api_service=api_service,
        token_issuer=token_issuer,
        cancel_event=cancel_event,
    )
