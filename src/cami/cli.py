"""CLI entry points for cami."""

from __future__ import annotations

import asyncio
import functools
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import structlog

from cami.agents import group_by_category, load_agents_from_sources
from cami.backup import (
    analyze_archive,
    cleanup_backups,
    restore_backup,
    should_suggest_cleanup,
)
from cami.config import CamiConfig, ConfigStore
from cami.deploy import (
    deploy_agents,
    deployment_outcome,
    record_deployment,
    select_agents,
    validate_target_path,
)
from cami.discovery import discover_projects, scan_all_locations
from cami.docs import update_claude_md
from cami.errors import CamiError
from cami.git import GitClient
from cami.manifest import ManifestStore
from cami.models import (
    BatchOutcome,
    DeploymentStatus,
    NormalizationLevel,
    OutcomeStatus,
    status_symbol,
)
from cami.normalize import (
    SourceNormalizationOptions,
    analyze_project,
    analyze_source,
    normalize_project,
    normalize_source,
)
from cami.onboarding import onboarding_state
from cami.reconcile import ReconcileMode, ReconcileResult, run_reconcile
from cami.sources import (
    add_source,
    list_sources,
    remove_source,
    source_status,
    update_sources,
)


def _configure_logging(level: int) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


_configure_logging(logging.WARNING)

_OUTCOME_SYMBOLS = {
    OutcomeStatus.OK: "✓",
    OutcomeStatus.SKIPPED: "○",
    OutcomeStatus.FAILED: "✗",
}


def _get_config() -> CamiConfig:
    return CamiConfig()


def _get_store(config: CamiConfig) -> ConfigStore:
    return ConfigStore.from_config(config)


def _handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn cami errors into a clean ``Error: ...`` and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CamiError as e:
            raise click.ClickException(str(e)) from e

    return wrapper


def _echo_outcome(outcome: BatchOutcome) -> None:
    for item in outcome.items:
        line = f"  {_OUTCOME_SYMBOLS[item.status]} {item.name}"
        if item.message:
            line += f": {item.message}"
        click.echo(line)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log progress to stderr.")
def main(verbose: bool) -> None:
    """CAMI: manage agent files across sources and deploy them into projects."""
    if verbose:
        _configure_logging(logging.DEBUG)


# -- Agents --


@main.command("list")
@_handle_errors
def list_cmd() -> None:
    """List available agents from all sources, by category."""
    store = _get_store(_get_config())
    index = load_agents_from_sources(store.load().agent_sources)
    if not index.resolved:
        click.echo("No agents found. Add a source with: cami source add <git-url>")
        return

    for category, agents in group_by_category(index.agents):
        click.echo(f"\n{category}:")
        for agent in agents:
            version = f" (v{agent.version})" if agent.version else ""
            click.echo(f"  {agent.name}{version}")
            if agent.description:
                click.echo(f"    {agent.description}")

    click.echo(f"\n{len(index.resolved)} agents available")
    for name in index.outcome.failed:
        click.echo(f"Warning: source {name} could not be loaded", err=True)


@main.command()
@click.argument("agent_names", nargs=-1, required=True)
@click.option("-l", "--location", "location_name", help="Deploy to a configured location.")
@click.option("-p", "--path", "target_path", type=click.Path(), help="Deploy to this directory.")
@click.option("--overwrite", is_flag=True, help="Replace agents that are already deployed.")
@_handle_errors
def deploy(
    agent_names: tuple[str, ...],
    location_name: str | None,
    target_path: str | None,
    overwrite: bool,
) -> None:
    """Deploy AGENT_NAMES into a project."""
    config = _get_config()
    store = _get_store(config)
    doc = store.load()

    if bool(location_name) == bool(target_path):
        raise click.UsageError("pass exactly one of --location or --path")
    if location_name:
        target_path = doc.get_deploy_location(location_name).path
    target = validate_target_path(target_path)

    index = load_agents_from_sources(doc.agent_sources)
    agents, missing = select_agents(index, agent_names)
    for name in missing:
        click.echo(f"  ✗ {name}: agent not found", err=True)

    results = deploy_agents(agents, target, overwrite=overwrite)
    outcome = deployment_outcome(results)
    click.echo(f"Deploying to {target}")
    _echo_outcome(outcome)

    if outcome.succeeded:
        record_deployment(ManifestStore.from_config(config), target, results, doc.agent_sources)
    click.echo(outcome.summary())
    if outcome.has_failures or missing:
        sys.exit(1)


@main.command()
@click.option("-l", "--location", "location_name", help="Only scan this location.")
@_handle_errors
def scan(location_name: str | None) -> None:
    """Show which agents are deployed, outdated or missing at each location."""
    store = _get_store(_get_config())
    doc = store.load()
    locations = doc.deploy_locations
    if location_name:
        locations = [doc.get_deploy_location(location_name)]
    if not locations:
        click.echo("No deploy locations configured.")
        click.echo("Add one with: cami location add <name> <path>")
        return

    available = load_agents_from_sources(doc.agent_sources).agents
    report = scan_all_locations(locations, available)
    for status in report.locations:
        click.echo(f"\n{status.location.name} ({status.location.path})")
        for agent in status.agents:
            detail = agent.deployed_version or "-"
            if agent.status == DeploymentStatus.UPDATE_AVAILABLE:
                detail = f"{agent.deployed_version or '-'} -> {agent.available_version}"
            click.echo(f"  {status_symbol(agent.status)} {agent.name} [{detail}]")

    for item in report.outcome.items:
        if item.status == OutcomeStatus.FAILED:
            click.echo(f"\n✗ {item.name}: {item.message}", err=True)


@main.command("update-docs")
@click.argument("project_path", type=click.Path(), default=".")
@click.option("--section", default="Deployed Agents", help="Heading of the managed section.")
@click.option("--dry-run", is_flag=True, help="Print the result instead of writing it.")
@_handle_errors
def update_docs(project_path: str, section: str, dry_run: bool) -> None:
    """Refresh the deployed-agents section of PROJECT_PATH/CLAUDE.md."""
    content = update_claude_md(project_path, section_name=section, dry_run=dry_run)
    if dry_run:
        click.echo(content)
    else:
        click.echo(f"✓ Updated {Path(project_path) / 'CLAUDE.md'}")


# -- Sources --


@main.group()
def source() -> None:
    """Manage agent sources."""


@source.command("add")
@click.argument("url")
@click.option("-n", "--name", help="Source name (default: derived from URL).")
@click.option("-p", "--priority", type=int, help="Higher numbers win name conflicts.")
@_handle_errors
def source_add(url: str, name: str | None, priority: int | None) -> None:
    """Clone URL into the sources directory and register it."""
    config = _get_config()
    added = add_source(
        _get_store(config), config, GitClient(config.git_executable), url, name, priority
    )
    click.echo(f"✓ Cloned {added.source.name} to {added.source.path}")
    click.echo(f"✓ Added source with priority {added.source.priority}")
    click.echo(f"✓ Found {added.agent_count} agents")


@source.command("list")
@_handle_errors
def source_list() -> None:
    """List configured sources."""
    summaries = list_sources(_get_store(_get_config()))
    if not summaries:
        click.echo("No agent sources configured.")
        click.echo("Add a source with: cami source add <git-url>")
        return

    for s in summaries:
        click.echo(f"  {s.name} (priority {s.priority})")
        click.echo(f"    Path: {s.path}")
        if s.error:
            click.echo(f"    Agents: error loading ({s.error})")
        else:
            compliance = "compliant" if s.is_compliant else f"{s.issue_count} issues"
            click.echo(f"    Agents: {s.agent_count} ({compliance})")
        if s.git_remote:
            click.echo(f"    Git: {s.git_remote}")


@source.command("update")
@click.argument("name", required=False)
@_handle_errors
def source_update(name: str | None) -> None:
    """Pull the latest changes for every git source, or only NAME."""
    config = _get_config()
    outcome = update_sources(_get_store(config), GitClient(config.git_executable), name)
    _echo_outcome(outcome)
    click.echo(outcome.summary())


@source.command("status")
@_handle_errors
def source_status_cmd() -> None:
    """Show uncommitted changes in each git source."""
    config = _get_config()
    for status in source_status(_get_store(config), GitClient(config.git_executable)):
        symbol = "✓" if status.clean else "⚠"
        click.echo(f"  {status.name}: {symbol} {status.describe()}")
        for line in status.changes[:3]:
            click.echo(f"      {line}")
        if len(status.changes) > 3:
            click.echo(f"      ... and {len(status.changes) - 3} more")


@source.command("remove")
@click.argument("name")
@_handle_errors
def source_remove(name: str) -> None:
    """Unregister source NAME. Its files stay on disk."""
    removed = remove_source(_get_store(_get_config()), name)
    click.echo(f"✓ Removed source {name!r} from configuration")
    click.echo(f"Note: {removed.path} still exists.")


def _echo_drift(result: ReconcileResult) -> None:
    for item in result.untracked:
        remote = f", git: {item.git_remote}" if item.git_remote else ""
        click.echo(f"  ? {item.name} (untracked, {item.agent_count} agents{remote})")
    for name in result.orphaned:
        click.echo(f"  ✗ {name} (configured, missing on disk)")


@source.command("reconcile")
@click.option("--check-only", is_flag=True, help="Report drift without changing anything.")
@click.option("--auto-add", is_flag=True, help="Register untracked sources without asking.")
@click.option("-q", "--quiet", is_flag=True, help="Print nothing when in sync.")
@_handle_errors
def source_reconcile(check_only: bool, auto_add: bool, quiet: bool) -> None:
    """Compare the sources directory with the configured sources."""
    config = _get_config()
    store = _get_store(config)
    if check_only:
        mode = ReconcileMode.CHECK_ONLY
    elif auto_add:
        mode = ReconcileMode.AUTO_ADD
    else:
        mode = ReconcileMode.MANUAL

    def _confirm(result: ReconcileResult) -> bool:
        _echo_drift(result)
        return click.confirm("Add untracked sources to config?", default=False)

    result, outcome = run_reconcile(
        store, config, GitClient(config.git_executable), mode, confirm=_confirm
    )

    if result.in_sync:
        if not quiet:
            click.echo(f"✓ {result.total_in_config} sources configured, all in sync")
        return

    # Manual mode already printed the drift before prompting.
    if mode != ReconcileMode.MANUAL or not result.untracked:
        _echo_drift(result)
    if outcome is not None:
        _echo_outcome(outcome)


@source.command("analyze")
@click.argument("name", required=False)
@_handle_errors
def source_analyze(name: str | None) -> None:
    """Check sources for missing names, versions, descriptions and ignore file."""
    doc = _get_store(_get_config()).load()
    sources = [doc.get_agent_source(name)] if name else doc.agent_sources
    for src in sources:
        analysis = analyze_source(src.name, src.path)
        symbol = "✓" if analysis.is_compliant else "⚠"
        click.echo(f"{symbol} {src.name}: {analysis.agent_count} agents")
        for issue in analysis.issues:
            click.echo(f"    {issue.agent_file}: {', '.join(issue.problems)}")
        if analysis.missing_ignore_file:
            click.echo("    missing .camiignore")


@source.command("normalize")
@click.argument("name")
@click.option("--versions/--no-versions", default=True, help="Add version 1.0.0 where missing.")
@click.option(
    "--descriptions/--no-descriptions", default=True, help="Add placeholder descriptions."
)
@click.option("--ignore-file/--no-ignore-file", default=True, help="Create .camiignore.")
@_handle_errors
def source_normalize(name: str, versions: bool, descriptions: bool, ignore_file: bool) -> None:
    """Bring source NAME into compliance. A backup is taken first."""
    src = _get_store(_get_config()).load().get_agent_source(name)
    options = SourceNormalizationOptions(
        add_versions=versions, add_descriptions=descriptions, create_ignore_file=ignore_file
    )
    result = normalize_source(src.name, src.path, options)
    for change in result.changes:
        click.echo(f"  ✓ {change}")
    click.echo(f"{result.agents_updated} agents updated")
    click.echo(f"Backup: {result.backup_path}")


# -- Locations --


@main.group()
def location() -> None:
    """Manage deploy locations."""


@location.command("add")
@click.argument("name")
@click.argument("path", type=click.Path())
@_handle_errors
def location_add(name: str, path: str) -> None:
    store = _get_store(_get_config())
    doc = store.load()
    loc = doc.add_deploy_location(name, Path(path).resolve())
    store.save(doc)
    click.echo(f"✓ Added location {loc.name} ({loc.path})")


@location.command("list")
@_handle_errors
def location_list() -> None:
    locations = _get_store(_get_config()).load().deploy_locations
    if not locations:
        click.echo("No deploy locations configured.")
        return
    for loc in locations:
        click.echo(f"  {loc.name}: {loc.path}")


@location.command("remove")
@click.argument("name")
@_handle_errors
def location_remove(name: str) -> None:
    store = _get_store(_get_config())
    doc = store.load()
    doc.remove_deploy_location(name)
    store.save(doc)
    click.echo(f"✓ Removed location {name}")


@location.command("discover")
@click.argument("root", type=click.Path(), default=".")
@click.option("--empty-only", is_flag=True, help="Only projects without agents.")
@click.option("--has-agent", default="", help="Only projects with this agent deployed.")
@click.option("--max-depth", type=int, default=0, help="Directory levels to descend (0: all).")
@_handle_errors
def location_discover(root: str, empty_only: bool, has_agent: str, max_depth: int) -> None:
    """Find projects with a .claude directory under ROOT."""
    projects = discover_projects(root, empty_only, has_agent, max_depth)
    if not projects:
        click.echo("No projects found.")
        return
    for p in projects:
        agents = ", ".join(p.agent_names) if p.agent_names else "no agents"
        click.echo(f"  {p.relative_path or '.'}: {agents}")
    click.echo(f"{len(projects)} projects")


# -- Projects --


@main.group()
def project() -> None:
    """Analyze and normalize projects."""


@project.command("analyze")
@click.argument("path", type=click.Path(), default=".")
@_handle_errors
def project_analyze(path: str) -> None:
    config = _get_config()
    sources = _get_store(config).load().agent_sources
    analysis = analyze_project(path, sources, ManifestStore.from_config(config))

    click.echo(f"State: {analysis.state}")
    click.echo(f"Agents: {analysis.agent_count}")
    for agent in analysis.agents:
        source = agent.matched_source or "no source"
        upgrade = " (upgrade available)" if agent.needs_upgrade else ""
        click.echo(f"  {agent.name} v{agent.version or '?'} [{source}]{upgrade}")

    recs = analysis.recommendations
    if recs.minimal_required:
        click.echo("Recommended: cami project normalize --level minimal")
    elif recs.standard_recommended:
        click.echo("Recommended: cami project normalize --level standard")


@project.command("normalize")
@click.argument("path", type=click.Path(), default=".")
@click.option(
    "--level",
    type=click.Choice([lvl.value for lvl in NormalizationLevel]),
    default=NormalizationLevel.MINIMAL.value,
    show_default=True,
)
@_handle_errors
def project_normalize(path: str, level: str) -> None:
    """Write the project manifest and record the project centrally."""
    config = _get_config()
    sources = _get_store(config).load().agent_sources
    result = normalize_project(path, level, sources, ManifestStore.from_config(config))
    for change in result.changes:
        click.echo(f"  ✓ {change}")
    click.echo(f"State: {result.state_before} -> {result.state_after}")
    click.echo(f"Backup: {result.backup_path}")
    if should_suggest_cleanup(path, config.backup_cleanup_threshold):
        click.echo(f"Tip: many backups exist, run 'cami backup cleanup {path}'")


# -- Backups --


@main.group()
def backup() -> None:
    """Inspect, prune and restore backups."""


@backup.command("list")
@click.argument("target", type=click.Path(), default=".")
@_handle_errors
def backup_list(target: str) -> None:
    """List backups of TARGET, newest first."""
    archive = analyze_archive(target)
    if not archive.total_backups:
        click.echo("No backups found.")
        return
    for info in archive.backups:
        click.echo(f"  {info.path.name}  {info.size_bytes} bytes")
    click.echo(f"{archive.total_backups} backups, {archive.total_size_bytes} bytes total")


@backup.command("cleanup")
@click.argument("target", type=click.Path(), default=".")
@click.option("--keep", type=int, help="Number of recent backups to keep.")
@_handle_errors
def backup_cleanup(target: str, keep: int | None) -> None:
    """Delete all but the most recent backups of TARGET."""
    config = _get_config()
    result = cleanup_backups(target, keep if keep is not None else config.backup_keep_recent)
    click.echo(f"Removed {result.removed_count} backups, freed {result.freed_bytes} bytes")


@backup.command("restore")
@click.argument("backup_path", type=click.Path())
@click.argument("target", type=click.Path())
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@_handle_errors
def backup_restore(backup_path: str, target: str, yes: bool) -> None:
    """Replace TARGET with the contents of BACKUP_PATH."""
    if not yes and not click.confirm(f"Replace {target} with {backup_path}?", default=False):
        click.echo("Restore cancelled.")
        return
    restore_backup(backup_path, target)
    click.echo(f"✓ Restored {target}")


# -- Setup --


@main.command()
@_handle_errors
def onboard() -> None:
    """Show setup status and the recommended next step."""
    state = onboarding_state(_get_store(_get_config()), Path.cwd())
    click.echo(f"Config:    {'found' if state.config_exists else 'not found'}")
    click.echo(f"Sources:   {state.source_count}")
    click.echo(f"Locations: {state.location_count}")
    click.echo(f"Agents:    {state.total_agents} available, {state.deployed_agents} deployed")
    click.echo(f"\nRecommended next step: {state.recommended_next}")


@main.command()
def mcp() -> None:
    """Run the MCP server over stdio."""
    from cami.mcp_server import run_server

    asyncio.run(run_server())
