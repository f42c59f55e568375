import click
import logging
import os

from rule_handler.core.logging_setup import setup_logging
from rule_handler.core import config as app_config
from rule_handler.features.rule_management.commands import rules_group


@click.group()
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose (DEBUG level) logging."
)
@click.option(
    "--api-endpoint",
    envvar="RULE_HANDLER_API_ENDPOINT",
    default=None,
    help="Base URL of the API (the GraphQL endpoint is <url>/graphql).",
)
@click.option(
    "--jwt-secret",
    envvar="RULE_HANDLER_JWT_SECRET",
    default=None,
    help="Secret used to sign auth tokens for API calls.",
)
@click.option(
    "--timeout",
    "request_timeout",
    type=float,
    default=None,
    help="Per-request timeout in seconds. Defaults to RULE_HANDLER_REQUEST_TIMEOUT or 10.",
)
@click.pass_context
def rule_handler(ctx, verbose, api_endpoint, jwt_secret, request_timeout):
    """
    Rule Handler: runs a user's automation rules against a page event.
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    running_tests = (
        "pytest" in os.environ.get("PYTEST_CURRENT_TEST", "")
        or os.environ.get("RULE_HANDLER_TEST_MODE") == "1"
    )
    logger = setup_logging(log_level=log_level, testing_mode=running_tests)

    # Preserve obj passed from runner.invoke in tests
    ctx.ensure_object(dict)
    ctx.obj["logger"] = logger

    # Settings are validated lazily by the commands that need them, so that
    # offline commands work without any API configuration.
    ctx.obj["settings_overrides"] = {
        "api_endpoint": api_endpoint,
        "jwt_secret": jwt_secret,
        "request_timeout": request_timeout,
    }

    logger.debug(
        f"Rule handler started. Verbose: {verbose}, API endpoint: {api_endpoint or app_config.API_ENDPOINT}, Testing Mode: {running_tests}"
    )


rule_handler.add_command(rules_group)


if __name__ == "__main__":
    rule_handler(obj={})
