import click
import json
import sys
from typing import Any, Dict, Optional

from pydantic import ValidationError

from rule_handler.core.config import load_settings
from rule_handler.core_api import rules_api_service
from rule_handler.core_api.exceptions import (
    RuleHandlerError,
    RuleStoreError,
    InvalidParameterError,
)
from .models import EventData
from .service import parse_search_filter, is_valid_data


def _write_json(status: str, cmd_name: str, message: str, data=None, error_details=None):
    response_obj = {
        "status": status,
        "command_executed": cmd_name,
        "message": message,
        "data": data,
        "error_details": error_details,
    }
    sys.stdout.write(json.dumps(response_obj, indent=2, default=str) + "\n")


def _load_json_option(value: str, option_name: str) -> Any:
    """Accepts a JSON string or a path to a JSON file."""
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        try:
            with open(value, "r") as f:
                return json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            raise InvalidParameterError(
                f"Could not parse {option_name}. Not valid JSON or readable file: {e}",
                original_exception=e,
            )


def _load_event(event_json: Optional[str], pubsub_json: Optional[str]) -> EventData:
    if bool(event_json) == bool(pubsub_json):
        raise InvalidParameterError("Provide exactly one of --event-json or --pubsub-json.")
    if pubsub_json:
        return EventData.from_pubsub_message(_load_json_option(pubsub_json, "--pubsub-json"))
    try:
        return EventData.model_validate(_load_json_option(event_json, "--event-json"))
    except ValidationError as e:
        raise InvalidParameterError(f"Event data is invalid: {e.errors()}", original_exception=e)


@click.group("rules")
@click.pass_context
def rules_group(ctx):
    """Inspect and run automation rules."""
    logger = ctx.obj.get("logger")
    if logger:
        logger.debug("Rules command group invoked.")


@rules_group.command("list")
@click.option("--user-id", required=True, help="User whose enabled rules are listed.")
@click.option(
    "--output-format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
)
@click.pass_context
def list_rules_cmd(ctx, user_id, output_format):
    """Lists the user's enabled rules."""
    logger = ctx.obj.get("logger")
    cmd_name = "rule-handler rules list"
    if logger:
        logger.info(f"Executing 'rules list' for user {user_id}")

    try:
        settings = load_settings(**ctx.obj.get("settings_overrides", {}))
        rules = rules_api_service.get_enabled_rules(user_id, settings)
    except (RuleStoreError, InvalidParameterError) as e:
        msg = f"Error loading rules: {e}"
        if logger:
            logger.error(msg, exc_info=True)
        if output_format == "json":
            _write_json(
                "error",
                cmd_name,
                msg,
                error_details={"code": e.__class__.__name__.upper(), "details": str(e.original_exception or e)},
            )
        else:
            click.secho(msg, fg="red")
        ctx.exit(1)
        return

    if output_format == "json":
        rules_data = [rule.model_dump(mode="json", by_alias=True) for rule in rules]
        _write_json("success", cmd_name, f"Successfully listed {len(rules_data)} rules.", rules_data)
        return

    if not rules:
        click.echo("No enabled rules.")
        return
    click.echo("Enabled Rules:")
    for i, rule in enumerate(rules):
        click.echo(f"\n--- Rule {i+1} ---")
        click.echo(f" ID: {rule.id}")
        click.echo(f" Name: {rule.name}")
        if rule.description:
            click.echo(f" Description: {rule.description}")
        click.echo(f" Filter: {rule.filter or '*'}")
        click.echo(" Actions:")
        for action in rule.actions:
            click.echo(
                f" - Type: {action.type.value}"
                + (f", Params: {', '.join(action.params)}" if action.params else "")
            )


@rules_group.command("check")
@click.option("--filter", "filter_text", required=True, help="Rule filter, e.g. 'subscription:newsletter'.")
@click.option("--event-json", default=None, help="Event as a JSON string or path to a JSON file.")
@click.option("--pubsub-json", default=None, help="Pub/Sub push envelope as a JSON string or file path.")
@click.pass_context
def check_filter_cmd(ctx, filter_text, event_json, pubsub_json):
    """Checks a filter against an event without calling the API."""
    logger = ctx.obj.get("logger")
    try:
        event = _load_event(event_json, pubsub_json)
    except InvalidParameterError as e:
        click.secho(str(e), fg="red")
        ctx.exit(1)
        return

    search_filter = parse_search_filter(filter_text)
    matched = is_valid_data(filter_text, event)
    if logger:
        logger.info(f"Filter '{filter_text}' against event {event.id}: {matched}")
    click.echo(f"Subscription filter: {search_filter.subscription_filter or '(none)'}")
    if matched:
        click.secho("Match", fg="green")
    else:
        click.secho("No match", fg="yellow")


@rules_group.command("apply")
@click.option("--user-id", required=True, help="User whose rules are run.")
@click.option("--event-json", default=None, help="Event as a JSON string or path to a JSON file.")
@click.option("--pubsub-json", default=None, help="Pub/Sub push envelope as a JSON string or file path.")
@click.option("--output-format", type=click.Choice(["human", "json"]), default="human", show_default=True)
@click.pass_context
def apply_rules_cmd(ctx, user_id, event_json, pubsub_json, output_format):
    """Runs the user's enabled rules against an event."""
    logger = ctx.obj.get("logger")
    cmd_name = "rule-handler rules apply"

    def _output_error(message: str, code: str, details: Optional[str] = None):
        if output_format == "json":
            _write_json("error", cmd_name, message, error_details={"code": code, "details": details or message})
        else:
            click.secho(message, fg="red")
        if logger:
            logger.error(message)
        ctx.exit(1)

    try:
        event = _load_event(event_json, pubsub_json)
        settings = load_settings(**ctx.obj.get("settings_overrides", {}))
    except InvalidParameterError as e:
        _output_error(str(e), "INVALID_PARAMETER", str(e.original_exception or e))
        return

    if logger:
        logger.info(f"Executing '{cmd_name}' for user {user_id}, event {event.id}")

    try:
        summary: Dict[str, Any] = rules_api_service.run_rules_for_event(user_id, event, settings)
    except RuleHandlerError as e:
        _output_error(
            f"Error during '{cmd_name}': {e.message}",
            e.__class__.__name__.upper(),
            str(e.original_exception or e),
        )
        return

    if output_format == "json":
        status = "error" if summary["errors"] else "success"
        _write_json(status, cmd_name, "Rule evaluation completed.", summary)
    else:
        click.echo("\n--- Rule Evaluation Summary ---")
        click.echo(f"Rules Evaluated: {summary['rules_evaluated']}")
        click.echo(f"Rules Matched: {len(summary['rules_matched'])}")
        for rule_id in summary["rules_matched"]:
            click.echo(f" - {rule_id}")
        click.echo(f"Actions Executed: {summary['actions_executed']}")
        click.echo(f"Actions Skipped: {summary['actions_skipped']}")
        if summary["cancelled"]:
            click.secho("Evaluation was cancelled before completion.", fg="yellow")
        if summary["errors"]:
            click.secho("\nErrors Encountered:", fg="red")
            for err_item in summary["errors"]:
                click.echo(f" - Rule {err_item['rule_id']} {err_item['action'] or ''}: {err_item['details']}")
        click.echo("--- End of Summary ---")

    if logger:
        logger.info(f"'{cmd_name}' completed. Summary: {summary}")
    if summary["errors"]:
        ctx.exit(1)
