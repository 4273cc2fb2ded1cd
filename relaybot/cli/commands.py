"""CLI commands for relaybot."""

import asyncio
import sys

import typer
from loguru import logger
from rich.console import Console

from relaybot import __logo__, __version__

app = typer.Typer(
    name="relaybot",
    help=f"{__logo__} relaybot - Slack chat-ops agent for GitHub and Jira",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} relaybot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
):
    """relaybot - Slack chat-ops agent."""
    pass


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


@app.command()
def onboard():
    """Write a default config file."""
    from relaybot.config.loader import get_config_path, save_config
    from relaybot.config.schema import Config

    config_path = get_config_path()
    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite with defaults?"):
            console.print("Keeping existing config.")
            return
    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("Set SLACK_BOT_TOKEN and GITHUB_TOKEN (or edit the file), then run [cyan]relaybot status[/cyan].")


@app.command()
def status():
    """Show configuration status."""
    from relaybot.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    def mark(ok: bool) -> str:
        return "[green]✓[/green]" if ok else "[dim]✗[/dim]"

    console.print(f"{__logo__} relaybot Status\n")
    console.print(f"Config: {config_path} {mark(config_path.exists())}")
    console.print(f"Agent: {config.agent.id}")
    console.print(f"Model: {config.agent.model}")
    console.print(f"Code model: {config.agent.code_model or '(same as model)'}")
    console.print(f"Max tool rounds: {config.agent.max_tool_rounds}")
    console.print(f"Thread session TTL: {config.sessions.ttl_seconds:.0f}s")
    console.print(f"Slack: {mark(config.slack.enabled)}")
    console.print(f"GitHub: {mark(bool(config.github.token))}")
    console.print(f"Jira: {mark(config.jira.enabled)}")
    console.print(f"Model endpoint: {config.provider.api_base or ('GitHub Models' if config.github.token else 'not set')}")


def _make_router(config):
    """Wire real collaborators from config."""
    from relaybot.agent.router import CommandRouter
    from relaybot.channels.slack import SlackClient
    from relaybot.clients.github import GitHubClient
    from relaybot.clients.jira import JiraClient
    from relaybot.providers.factory import create_provider

    if not config.slack.enabled:
        console.print("[red]Error: Slack bot token is not configured (SLACK_BOT_TOKEN).[/red]")
        raise typer.Exit(1)

    provider = create_provider(config)
    tracker = None
    if config.jira.enabled:
        tracker = JiraClient(
            config.jira.base_url,
            config.jira.email,
            config.jira.api_token,
            team_field=config.jira.team_field,
        )
    return CommandRouter.from_config(
        config,
        messenger=SlackClient(config.slack.bot_token),
        code_host=GitHubClient(config.github.token, api_base=config.github.api_base),
        provider=provider,
        tracker=tracker,
    )


@app.command()
def ask(
    text: str = typer.Argument(..., help="Request text, as typed after the slash command"),
    channel: str = typer.Option(..., "--channel", "-c", help="Slack channel id"),
    user: str = typer.Option(..., "--user", "-u", help="Slack user id of the requester"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
):
    """Run one command through the agent; replies are posted to Slack."""
    from relaybot.config.loader import load_config

    _configure_logging(verbose)
    config = load_config()
    try:
        router = _make_router(config)
    except RuntimeError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    async def _run():
        try:
            await router.handle(channel, user, text)
        finally:
            router.sessions.shutdown()

    asyncio.run(_run())
    console.print("[green]✓[/green] Done. See the Slack channel for the reply.")


if __name__ == "__main__":
    app()
