"""Tidewave proxy tool schemas plus the Hydra sketch tool."""

from __future__ import annotations

from typing import Any

TIDEWAVE_PREFIX = "tidewave_"

TIDEWAVE_TOOLS: list[dict[str, Any]] = [
    {
        "name": "tidewave_get_logs",
        "description": (
            "Returns all log output from Tidewave, excluding logs that were caused by other tool calls. "
            "Use this tool to check for request logs or potentially logged errors."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["tail"],
            "properties": {
                "tail": {
                    "type": "number",
                    "description": "The number of log entries to return from the end of the log",
                }
            },
        },
    },
    {
        "name": "tidewave_get_source_location",
        "description": (
            "Returns the source location for the given reference. Works for modules in the current "
            "project and dependencies (but not Elixir itself). Use when you know the Module, "
            "Module.function, or Module.function/arity. You can also use 'dep:PACKAGE_NAME' to get the "
            "location of a specific dependency package."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["reference"],
            "properties": {
                "reference": {
                    "type": "string",
                    "description": (
                        "The reference to find (e.g., 'MyModule', 'MyModule.function', "
                        "'MyModule.function/2', or 'dep:package_name')"
                    ),
                }
            },
        },
    },
    {
        "name": "tidewave_get_docs",
        "description": "Returns the documentation for the given reference (Module or Module.function)",
        "inputSchema": {
            "type": "object",
            "required": ["reference"],
            "properties": {
                "reference": {
                    "type": "string",
                    "description": "The reference to get docs for (e.g., 'MyModule' or 'MyModule.function')",
                }
            },
        },
    },
    {
        "name": "tidewave_project_eval",
        "description": (
            "Evaluates Elixir code in the context of the project. Use this tool every time you need to "
            "evaluate Elixir code, including to test the behaviour of a function or to debug something. "
            "The tool also returns anything written to standard output. DO NOT use shell tools to "
            "evaluate Elixir code. It also includes IEx helpers in the evaluation context."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["code"],
            "properties": {
                "code": {"type": "string", "description": "The Elixir code to evaluate"},
                "arguments": {
                    "type": "array",
                    "description": (
                        "The arguments to pass to evaluation. They are available inside the evaluated "
                        "code as `arguments`"
                    ),
                    "items": {},
                },
                "timeout": {
                    "type": "integer",
                    "description": (
                        "Optional. The maximum time to wait for execution, in milliseconds. Defaults to 30000"
                    ),
                },
            },
        },
    },
    {
        "name": "tau5_hydra_eval",
        "description": (
            "Updates the Hydra visual sketch running in the background iframe. "
            "Accepts Hydra.js code that will be executed in the browser."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["code"],
            "properties": {
                "code": {"type": "string", "description": "Hydra sketch code to run in the background iframe"}
            },
        },
    },
    {
        "name": "tidewave_search_package_docs",
        "description": (
            "Searches Hex documentation for the project's dependencies or a list of packages. If you're "
            "trying to get documentation for a specific module or function, first try the project_eval "
            "tool with the h helper."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["q"],
            "properties": {
                "q": {"type": "string", "description": "The search query"},
                "packages": {
                    "type": "array",
                    "description": "Optional list of packages to search. Defaults to project dependencies.",
                    "items": {"type": "string"},
                },
            },
        },
    },
    {
        "name": "tidewave_execute_sql_query",
        "description": (
            "Executes the given SQL query against the given default or specified Ecto repository. "
            "Returns the result as an Elixir data structure."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["query"],
            "properties": {
                "query": {"type": "string", "description": "The SQL query to execute"},
                "repo": {
                    "type": "string",
                    "description": "The Ecto repository module (optional, defaults to first configured repo)",
                },
                "bindings": {"type": "array", "description": "Optional query bindings", "items": {}},
            },
        },
    },
    {
        "name": "tidewave_get_ecto_schemas",
        "description": "Returns information about Ecto schemas in the project",
        "inputSchema": {
            "type": "object",
            "properties": {
                "schema": {"type": "string", "description": "Optional specific schema module to get information about"}
            },
        },
    },
    {
        "name": "tidewave_call_tool",
        "description": (
            "Call any Tidewave MCP tool directly. This is a generic proxy for tools that may be added "
            "to Tidewave in the future."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["name", "arguments"],
            "properties": {
                "name": {"type": "string", "description": "The name of the Tidewave tool to call"},
                "arguments": {
                    "type": "object",
                    "description": "The arguments to pass to the tool",
                    "additionalProperties": True,
                },
            },
        },
    },
]

__all__ = ["TIDEWAVE_PREFIX", "TIDEWAVE_TOOLS"]
