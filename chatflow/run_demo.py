#!/usr/bin/env python3
"""Demo: run a workflow file as a console conversation.

Usage:
    python -m chatflow.run_demo workflows/support_demo.json
    python -m chatflow.run_demo workflows/support_demo.json --validate
    python -m chatflow.run_demo workflows/support_demo.json --mock-llm -m "hi" -m "2"

The workflow file holds {"nodes": [...], "edges": [...]} and optionally a
"chatbot" object with ChatbotConfig fields (camelCase or snake_case).
Without -m the demo reads user messages from stdin until EOF or "/quit".
"""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from .agents.llm_client import MockLLMClient
from .engine.context import ChatbotConfig, ExecutionContext, ExecutionResult
from .engine.executor import ConversationExecutor
from .engine.graph import WorkflowGraph, validate_graph
from .errors import GraphError
from .integrations.actions import ActionRegistry
from .integrations.knowledge import HttpKnowledgeSearchClient
from .logging_config import get_runtime_logger
from .nodes.registry import HandlerDependencies, HandlerRegistry
from .tracer import LoggingObserver


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a chatflow workflow in the console")
    parser.add_argument("workflow", type=Path, help="Workflow JSON file")
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Only validate the graph and print the report",
    )
    parser.add_argument(
        "--mock-llm",
        action="store_true",
        help="Use the deterministic mock LLM instead of a provider API",
    )
    parser.add_argument(
        "-m", "--message",
        action="append",
        default=None,
        help="Scripted user message (repeatable); disables stdin input",
    )
    parser.add_argument(
        "--knowledge",
        action="store_true",
        help="Enable knowledge lookups against KNOWLEDGE_API_BASE_URL",
    )
    parser.add_argument(
        "--show-state",
        action="store_true",
        help="Print the persisted execution state after every turn",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Log every node execution to logs/runtime.log and the console",
    )
    return parser.parse_args(argv)


def load_workflow(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def print_results(results: List[ExecutionResult]) -> None:
    for result in results:
        response = result.response
        if response is None or (not response.content and not response.buttons):
            continue
        print(f"bot> {response.content}")
        for button in response.buttons or []:
            print(f"     [{button.value}] {button.label}")
        if response.type == "handoff":
            print("     (handed off to a human agent)")


def print_state(context: ExecutionContext) -> None:
    state = ConversationExecutor.get_execution_state(context)
    print(json.dumps(state.to_dict(), indent=2, ensure_ascii=False))


def _user_messages(scripted: Optional[List[str]]):
    if scripted is not None:
        for message in scripted:
            print(f"you> {message}")
            yield message
        return
    while True:
        try:
            message = input("you> ")
        except EOFError:
            return
        if message.strip() == "/quit":
            return
        yield message


async def run(args: argparse.Namespace) -> int:
    data = load_workflow(args.workflow)
    graph = WorkflowGraph.from_dict(data)
    chatbot = ChatbotConfig.model_validate(data.get("chatbot") or {"id": "demo-bot"})

    deps = HandlerDependencies(
        chatbot=chatbot,
        llm_client=MockLLMClient() if args.mock_llm else None,
        knowledge_searcher=(
            HttpKnowledgeSearchClient(workspace_id=chatbot.workspace_id) if args.knowledge else None
        ),
        action_dispatcher=ActionRegistry(),
    )
    registry = HandlerRegistry.build(deps)

    report = validate_graph(graph, registry)
    if args.validate:
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
        return 0 if report.valid else 1
    for issue in report.errors:
        print(f"warning: {issue.message}", file=sys.stderr)

    observer = LoggingObserver(get_runtime_logger()) if args.trace else None
    executor = ConversationExecutor(graph, chatbot, registry=registry, observer=observer)

    conversation_id = f"demo-{uuid.uuid4().hex[:8]}"
    try:
        results, context = await executor.start_conversation(
            conversation_id=conversation_id,
            session_id=conversation_id,
            chatbot_id=chatbot.id,
            workflow_id=args.workflow.stem,
        )
    except GraphError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print_results(results)
    if args.show_state:
        print_state(context)

    for message in _user_messages(args.message):
        results, context = await executor.process_message(message, context)
        print_results(results)
        if args.show_state:
            print_state(context)

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
