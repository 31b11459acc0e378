"""MCP server exposing cami's agent, source, location and project operations."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

import structlog
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from cami.agents import group_by_category, load_agents_from_sources
from cami.backup import cleanup_backups
from cami.config import CamiConfig, ConfigStore, DeployLocation
from cami.deploy import (
    deploy_agents,
    deployment_outcome,
    record_deployment,
    select_agents,
    validate_target_path,
)
from cami.discovery import scan_location
from cami.docs import update_claude_md
from cami.errors import CamiError
from cami.git import GitClient
from cami.manifest import ManifestStore
from cami.models import status_symbol
from cami.normalize import (
    SourceNormalizationOptions,
    analyze_project,
    analyze_source,
    normalize_project,
    normalize_source,
)
from cami.onboarding import onboarding_state
from cami.reconcile import ReconcileMode, run_reconcile
from cami.sources import add_source, list_sources, source_status, update_sources

logging.getLogger("mcp").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


class CamiToolbox:
    """Tool implementations over one workspace. Every method returns a JSON-ready dict."""

    def __init__(
        self,
        config: CamiConfig,
        store: ConfigStore | None = None,
        manifests: ManifestStore | None = None,
        git: GitClient | None = None,
    ):
        self.config = config
        self.store = store or ConfigStore.from_config(config)
        self.manifests = manifests or ManifestStore.from_config(config)
        self.git = git or GitClient(config.git_executable)

    # -- Agents --

    def list_agents(self) -> dict[str, Any]:
        index = load_agents_from_sources(self.store.load().agent_sources)
        categories = []
        for category, agents in group_by_category(index.agents):
            categories.append(
                {
                    "category": category,
                    "agents": [
                        {
                            "name": a.name,
                            "version": a.version,
                            "description": a.description,
                            "source": index.resolved[a.name].source_name,
                        }
                        for a in agents
                    ],
                }
            )
        return {
            "total": len(index.resolved),
            "categories": categories,
            "sources": index.outcome.to_dict(),
        }

    def deploy_agents(
        self, agent_names: list[str], target_path: str, overwrite: bool = False
    ) -> dict[str, Any]:
        target = validate_target_path(target_path)
        sources = self.store.load().agent_sources
        agents, missing = select_agents(load_agents_from_sources(sources), agent_names)
        results = deploy_agents(agents, target, overwrite=overwrite)
        outcome = deployment_outcome(results)
        if outcome.succeeded:
            record_deployment(self.manifests, target, results, sources)
        return {"target_path": str(target), "missing": missing, **outcome.to_dict()}

    def scan_deployed_agents(self, target_path: str) -> dict[str, Any]:
        target = validate_target_path(target_path)
        available = load_agents_from_sources(self.store.load().agent_sources).agents
        status = scan_location(DeployLocation(name=target.name, path=str(target)), available)
        return {
            "target_path": str(target),
            "agents": [
                {**asdict(a), "symbol": status_symbol(a.status)} for a in status.agents
            ],
        }

    def update_claude_md(
        self, target_path: str, section_name: str = "Deployed Agents", dry_run: bool = False
    ) -> dict[str, Any]:
        content = update_claude_md(target_path, section_name=section_name, dry_run=dry_run)
        return {
            "path": str(Path(target_path) / "CLAUDE.md"),
            "dry_run": dry_run,
            "content": content,
        }

    # -- Locations --

    def add_location(self, name: str, path: str) -> dict[str, Any]:
        doc = self.store.load()
        loc = doc.add_deploy_location(name, Path(path).expanduser().resolve())
        self.store.save(doc)
        return {"added": loc.model_dump()}

    def list_locations(self) -> dict[str, Any]:
        doc = self.store.load()
        return {"locations": [loc.model_dump() for loc in doc.deploy_locations]}

    def remove_location(self, name: str) -> dict[str, Any]:
        doc = self.store.load()
        removed = doc.remove_deploy_location(name)
        self.store.save(doc)
        return {"removed": removed.model_dump()}

    # -- Sources --

    def list_sources(self) -> dict[str, Any]:
        return {"sources": [asdict(s) for s in list_sources(self.store)]}

    def add_source(
        self, git_url: str, name: str | None = None, priority: int | None = None
    ) -> dict[str, Any]:
        added = add_source(self.store, self.config, self.git, git_url, name, priority)
        return {
            "source": added.source.model_dump(exclude_none=True),
            "agent_count": added.agent_count,
        }

    def update_source(self, name: str | None = None) -> dict[str, Any]:
        return update_sources(self.store, self.git, name).to_dict()

    def source_status(self) -> dict[str, Any]:
        return {
            "sources": [
                {**asdict(s), "clean": s.clean, "summary": s.describe()}
                for s in source_status(self.store, self.git)
            ]
        }

    def reconcile_sources(self, auto_add: bool = False) -> dict[str, Any]:
        mode = ReconcileMode.AUTO_ADD if auto_add else ReconcileMode.CHECK_ONLY
        result, outcome = run_reconcile(self.store, self.config, self.git, mode)
        response: dict[str, Any] = {**asdict(result), "in_sync": result.in_sync}
        if outcome is not None:
            response["added"] = outcome.to_dict()
        return response

    # -- Normalization --

    def detect_source_state(self, name: str) -> dict[str, Any]:
        src = self.store.load().get_agent_source(name)
        return asdict(analyze_source(src.name, src.path))

    def normalize_source(
        self,
        name: str,
        add_versions: bool = True,
        add_descriptions: bool = True,
        create_camiignore: bool = True,
    ) -> dict[str, Any]:
        src = self.store.load().get_agent_source(name)
        options = SourceNormalizationOptions(
            add_versions=add_versions,
            add_descriptions=add_descriptions,
            create_ignore_file=create_camiignore,
        )
        return asdict(normalize_source(src.name, src.path, options))

    def detect_project_state(self, path: str) -> dict[str, Any]:
        sources = self.store.load().agent_sources
        return asdict(analyze_project(path, sources, self.manifests))

    def normalize_project(self, path: str, level: str = "minimal") -> dict[str, Any]:
        sources = self.store.load().agent_sources
        result = normalize_project(path, level, sources, self.manifests)
        return {**asdict(result), "undo_available": result.undo_available}

    def cleanup_backups(self, target_path: str, keep_recent: int | None = None) -> dict[str, Any]:
        keep = keep_recent if keep_recent is not None else self.config.backup_keep_recent
        return asdict(cleanup_backups(target_path, keep))

    def onboard(self, project_path: str | None = None) -> dict[str, Any]:
        return asdict(onboarding_state(self.store, project_path))


# -- Tool definitions --


def _object(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


_PATH = {"type": "string", "description": "Absolute path to the project directory"}
_NAME = {"type": "string", "description": "Name as registered in the cami config"}

AGENT_TOOLS: list[Tool] = [
    Tool(
        name="list_agents",
        description="List every available agent across all sources, grouped by category.",
        inputSchema=_object({}),
    ),
    Tool(
        name="deploy_agents",
        description=(
            "Deploy agents into a project's .claude/agents directory and record the "
            "deployment in the project and central manifests."
        ),
        inputSchema=_object(
            {
                "agent_names": {"type": "array", "items": {"type": "string"}},
                "target_path": _PATH,
                "overwrite": {"type": "boolean", "default": False},
            },
            ["agent_names", "target_path"],
        ),
    ),
    Tool(
        name="scan_deployed_agents",
        description="Compare the agents deployed in a project with the available versions.",
        inputSchema=_object({"target_path": _PATH}, ["target_path"]),
    ),
    Tool(
        name="update_claude_md",
        description="Refresh the managed deployed-agents section of a project's CLAUDE.md.",
        inputSchema=_object(
            {
                "target_path": _PATH,
                "section_name": {"type": "string", "default": "Deployed Agents"},
                "dry_run": {"type": "boolean", "default": False},
            },
            ["target_path"],
        ),
    ),
]

LOCATION_TOOLS: list[Tool] = [
    Tool(
        name="add_location",
        description="Register a project directory as a deploy location.",
        inputSchema=_object({"name": _NAME, "path": _PATH}, ["name", "path"]),
    ),
    Tool(
        name="list_locations",
        description="List registered deploy locations.",
        inputSchema=_object({}),
    ),
    Tool(
        name="remove_location",
        description="Unregister a deploy location. The directory is not touched.",
        inputSchema=_object({"name": _NAME}, ["name"]),
    ),
]

SOURCE_TOOLS: list[Tool] = [
    Tool(
        name="list_sources",
        description="List agent sources with agent counts and compliance summary.",
        inputSchema=_object({}),
    ),
    Tool(
        name="add_source",
        description="Clone a git repository of agents into the workspace and register it.",
        inputSchema=_object(
            {
                "git_url": {"type": "string"},
                "name": {"type": "string"},
                "priority": {
                    "type": "integer",
                    "description": "Higher numbers win when two sources define the same agent",
                },
            },
            ["git_url"],
        ),
    ),
    Tool(
        name="update_source",
        description="git pull one source, or every git-enabled source when no name is given.",
        inputSchema=_object({"name": _NAME}),
    ),
    Tool(
        name="source_status",
        description="Report uncommitted changes in each git-enabled source.",
        inputSchema=_object({}),
    ),
    Tool(
        name="reconcile_sources",
        description=(
            "Find source directories missing from the config and configured sources "
            "missing from disk. With auto_add, register the untracked directories."
        ),
        inputSchema=_object({"auto_add": {"type": "boolean", "default": False}}),
    ),
]

NORMALIZE_TOOLS: list[Tool] = [
    Tool(
        name="detect_source_state",
        description="Check a source for agents missing name, version or description.",
        inputSchema=_object({"name": _NAME}, ["name"]),
    ),
    Tool(
        name="normalize_source",
        description="Fix a source's compliance issues. The source is backed up first.",
        inputSchema=_object(
            {
                "name": _NAME,
                "add_versions": {"type": "boolean", "default": True},
                "add_descriptions": {"type": "boolean", "default": True},
                "create_camiignore": {"type": "boolean", "default": True},
            },
            ["name"],
        ),
    ),
    Tool(
        name="detect_project_state",
        description="Classify a project and match its agents against the sources.",
        inputSchema=_object({"path": _PATH}, ["path"]),
    ),
    Tool(
        name="normalize_project",
        description="Create the project manifest. The project is backed up first.",
        inputSchema=_object(
            {
                "path": _PATH,
                "level": {
                    "type": "string",
                    "enum": ["minimal", "standard", "full"],
                    "default": "minimal",
                },
            },
            ["path"],
        ),
    ),
    Tool(
        name="cleanup_backups",
        description="Delete all but the most recent backups of a directory.",
        inputSchema=_object(
            {"target_path": _PATH, "keep_recent": {"type": "integer", "minimum": 1}},
            ["target_path"],
        ),
    ),
    Tool(
        name="onboard",
        description="Summarize the cami setup and recommend the next step.",
        inputSchema=_object({"project_path": _PATH}),
    ),
]

ALL_TOOLS = AGENT_TOOLS + LOCATION_TOOLS + SOURCE_TOOLS + NORMALIZE_TOOLS


def _serialize(result: dict[str, Any]) -> str:
    return json.dumps(result, default=str)


def dispatch(tools: CamiToolbox, name: str, arguments: dict[str, Any]) -> str:
    """Run tool ``name`` and return its JSON payload. Errors become ``{"error": ...}``."""
    try:
        result = _call(tools, name, arguments)
    except CamiError as e:
        logger.warning("Tool %s failed: %s", name, e)
        result = {"error": str(e)}
    except (KeyError, ValueError) as e:
        result = {"error": f"Invalid arguments for {name}: {e}"}
    return _serialize(result)


def _call(tools: CamiToolbox, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    # -- Agents --
    if name == "list_agents":
        return tools.list_agents()

    if name == "deploy_agents":
        return tools.deploy_agents(
            agent_names=arguments["agent_names"],
            target_path=arguments["target_path"],
            overwrite=arguments.get("overwrite", False),
        )

    if name == "scan_deployed_agents":
        return tools.scan_deployed_agents(arguments["target_path"])

    if name == "update_claude_md":
        return tools.update_claude_md(
            target_path=arguments["target_path"],
            section_name=arguments.get("section_name", "Deployed Agents"),
            dry_run=arguments.get("dry_run", False),
        )

    # -- Locations --
    if name == "add_location":
        return tools.add_location(arguments["name"], arguments["path"])

    if name == "list_locations":
        return tools.list_locations()

    if name == "remove_location":
        return tools.remove_location(arguments["name"])

    # -- Sources --
    if name == "list_sources":
        return tools.list_sources()

    if name == "add_source":
        return tools.add_source(
            git_url=arguments["git_url"],
            name=arguments.get("name"),
            priority=arguments.get("priority"),
        )

    if name == "update_source":
        return tools.update_source(arguments.get("name"))

    if name == "source_status":
        return tools.source_status()

    if name == "reconcile_sources":
        return tools.reconcile_sources(auto_add=arguments.get("auto_add", False))

    # -- Normalization --
    if name == "detect_source_state":
        return tools.detect_source_state(arguments["name"])

    if name == "normalize_source":
        return tools.normalize_source(
            name=arguments["name"],
            add_versions=arguments.get("add_versions", True),
            add_descriptions=arguments.get("add_descriptions", True),
            create_camiignore=arguments.get("create_camiignore", True),
        )

    if name == "detect_project_state":
        return tools.detect_project_state(arguments["path"])

    if name == "normalize_project":
        return tools.normalize_project(arguments["path"], arguments.get("level", "minimal"))

    if name == "cleanup_backups":
        return tools.cleanup_backups(arguments["target_path"], arguments.get("keep_recent"))

    if name == "onboard":
        return tools.onboard(arguments.get("project_path"))

    return {"error": f"Unknown tool: {name}"}


async def handle_call(
    tools: CamiToolbox, name: str, arguments: dict[str, Any] | None
) -> list[TextContent]:
    """Run one tool call in a worker thread and wrap the JSON reply."""
    text = await asyncio.to_thread(dispatch, tools, name, arguments or {})
    return [TextContent(type="text", text=text)]


def create_server(config: CamiConfig | None = None) -> Server:
    """Create and configure the MCP server."""
    server = Server("cami")
    tools = CamiToolbox(config or CamiConfig())

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return ALL_TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        return await handle_call(tools, name, arguments)

    return server


async def run_server() -> None:
    """Run the MCP server over stdio."""
    # stdout carries the protocol.
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=sys.stderr))
    server = create_server()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())
