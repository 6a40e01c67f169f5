"""Command-line interface for the agent console.

This module is the composition root: it loads config, builds the credential
provider, project client and registry, and hands them to the shell. Nothing
is held in module-level state.

Usage:
    python -m agent_console chat
    python -m agent_console chat --mode delegated --agent "Web Research Agent"
    python -m agent_console list-agents
    python -m agent_console validate-config
    python -m agent_console check-connections
    python -m agent_console sign-in | sign-out | whoami
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

from agent_console.config import validate_config_file
from agent_console.core.logging import configure_logging

if TYPE_CHECKING:
    from agent_console.agents.registry import AgentRegistry, AgentSelection
    from agent_console.auth.credentials import CredentialProvider
    from agent_console.auth.msal_auth import DeviceCodeAuth
    from agent_console.config_schema import AppConfig

console = Console()

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)

mode_option = click.option(
    "--mode",
    type=click.Choice(["application", "delegated"]),
    default=None,
    help="Permission mode (default: auth.mode from config)",
)


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    selection: AgentSelection
    credentials: CredentialProvider
    registry: AgentRegistry


def _load_config_or_exit(config_path: Path | None, debug: bool) -> AppConfig:
    """Load config and apply its logging settings. Exits with 1 on config errors."""
    from agent_console.config import load_config
    from agent_console.core.errors import ConfigError

    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml from config/config.yaml.example "
            "and set at least [cyan]project.endpoint[/cyan] and one agent."
        )
        sys.exit(1)

    if not debug:
        configure_logging(log_level=config.logging.level, json_output=config.logging.json_output)
    return config


def _init_cli_deps(config_path: Path | None, mode: str | None, debug: bool) -> CLIDeps:
    """Initialize shared CLI dependencies.

    Loads config, validates agents, builds the credential provider, project
    client and registry. Prints actionable error messages and calls
    sys.exit(1) on failure.
    """
    from agent_console.agents.backend import create_project_client
    from agent_console.agents.registry import AgentRegistry, select_valid_agents
    from agent_console.auth.credentials import build_credential_provider
    from agent_console.core.errors import ConfigError

    # 1. Load config
    config = _load_config_or_exit(config_path, debug)

    # 2. Validate agents one by one
    if not config.agents:
        console.print("[red]No agents configured.[/red] Please check the 'agents' section of your config.")
        sys.exit(1)

    selection = select_valid_agents(config.agents)
    for rejected in selection.rejected:
        label = rejected.name or f"#{rejected.index + 1}"
        console.print(f"[yellow]Invalid configuration for agent '{label}':[/yellow] {rejected}")

    if not selection.valid:
        console.print("[red]No valid agents found.[/red] Please check your configuration.")
        sys.exit(1)

    # 3. Credentials for the chosen permission mode
    try:
        credentials = build_credential_provider(config, mode)  # type: ignore[arg-type]
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)

    # 4. Project client and registry
    client = create_project_client(config.project.endpoint, credentials.credential())
    registry = AgentRegistry(client)

    return CLIDeps(
        config=config,
        selection=selection,
        credentials=credentials,
        registry=registry,
    )


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Agent console - chat with grounded Azure AI Foundry agents."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    configure_logging(log_level="DEBUG" if debug else "WARNING", json_output=False)


@cli.command("validate-config")
@config_option
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists and passes schema validation, and reports
    agents that will be excluded from the menu.
    """
    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("list-agents")
@config_option
@click.pass_context
def list_agents(ctx: click.Context, config_path: Path | None) -> None:
    """Show the agents that can be selected, and the ones that were excluded."""
    from agent_console.agents.registry import select_valid_agents

    config = _load_config_or_exit(config_path, ctx.obj["debug"])
    selection = select_valid_agents(config.agents)

    table = Table(box=None, padding=(0, 2))
    table.add_column("#", justify="right")
    table.add_column("Agent", style="cyan")
    table.add_column("Deployment")
    table.add_column("Tools")
    for number, agent in enumerate(selection.valid, start=1):
        tools = ", ".join(t.tool_type.value for t in agent.tools) or "-"
        table.add_row(str(number), agent.name, agent.deployment, tools)
    console.print(table)

    for rejected in selection.rejected:
        label = rejected.name or f"#{rejected.index + 1}"
        console.print(f"[yellow]Excluded '{label}':[/yellow] {rejected}")


@cli.command("chat")
@config_option
@mode_option
@click.option("--agent", "agent_name", default=None, help="Skip the menu and use this agent")
@click.pass_context
def chat(ctx: click.Context, config_path: Path | None, mode: str | None, agent_name: str | None) -> None:
    """Select an agent and chat with it.

    Type 'exit' or an empty line to quit.
    """
    from agent_console.core.errors import AgentConsoleError
    from agent_console.shell import InteractiveShell

    deps = _init_cli_deps(config_path, mode, ctx.obj["debug"])

    agent_config = None
    if agent_name:
        agent_config = deps.selection.find(agent_name)
        if agent_config is None:
            console.print(f"[red]Unknown agent:[/red] {agent_name}")
            sys.exit(1)

    shell = InteractiveShell(
        console=console,
        registry=deps.registry,
        credentials=deps.credentials,
        agents=deps.selection.valid,
    )

    try:
        shell.run(agent_config)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except AgentConsoleError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)

    console.print("[dim]Goodbye.[/dim]")


@cli.command("check-connections")
@config_option
@mode_option
@click.pass_context
def check_connections(ctx: click.Context, config_path: Path | None, mode: str | None) -> None:
    """Verify that every agent's tool connections exist in the project."""
    from agent_console.core.errors import AgentConsoleError

    deps = _init_cli_deps(config_path, mode, ctx.obj["debug"])

    try:
        deps.credentials.prepare()
        results = [
            (agent.name, deps.registry.validate_connections(agent))
            for agent in deps.selection.valid
        ]
    except AgentConsoleError as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)

    for name, ok in results:
        mark = "[green]✓[/green]" if ok else "[red]✗[/red]"
        console.print(f"{mark} {name}")

    sys.exit(0 if all(ok for _, ok in results) else 1)


def _auth_or_exit(config_path: Path | None, debug: bool) -> DeviceCodeAuth:
    from agent_console.auth.credentials import build_auth
    from agent_console.core.errors import ConfigError

    config = _load_config_or_exit(config_path, debug)
    try:
        return build_auth(config)
    except ConfigError as e:
        console.print(f"[red]Config error:[/red] {e}")
        sys.exit(1)


@cli.command("sign-in")
@config_option
@click.pass_context
def sign_in(ctx: click.Context, config_path: Path | None) -> None:
    """Sign in with the device code flow for delegated mode."""
    from agent_console.core.errors import AuthenticationError

    auth = _auth_or_exit(config_path, ctx.obj["debug"])
    try:
        auth.sign_in()
    except AuthenticationError as e:
        console.print(f"[red]Authentication error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Signed in as {auth.get_current_identity()}")


@cli.command("sign-out")
@config_option
@click.pass_context
def sign_out(ctx: click.Context, config_path: Path | None) -> None:
    """Remove all cached accounts."""
    from agent_console.core.errors import AuthenticationError

    auth = _auth_or_exit(config_path, ctx.obj["debug"])
    try:
        auth.sign_out()
    except AuthenticationError as e:
        console.print(f"[red]Authentication error:[/red] {e}")
        sys.exit(1)
    console.print("[green]✓[/green] Signed out")


@cli.command("whoami")
@config_option
@click.pass_context
def whoami(ctx: click.Context, config_path: Path | None) -> None:
    """Show the cached delegated identity, if any."""
    auth = _auth_or_exit(config_path, ctx.obj["debug"])
    identity = auth.get_current_identity()
    status = "signed in" if auth.is_authenticated() else "not signed in"
    console.print(f"{identity} ({status})")


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
