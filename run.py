"""Run a ComfyUI workflow and save its outputs.

Run with: python run.py -w workflow.json [-s localhost:8188] [--set 6.text="a cat"]
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from comfy_link import (
    ClientSettings,
    ComfyClient,
    ComfyError,
    DataEvent,
    ExecutingEvent,
    ProgressEvent,
    StartedEvent,
    StoppedEvent,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("run")


def parse_assignment(text: str) -> tuple[int, str, object]:
    """Parse NODE_ID.PROPERTY=VALUE; VALUE is JSON if it parses, else a string."""
    target, _, raw = text.partition("=")
    node_id, _, name = target.partition(".")
    if not name or not node_id.isdigit():
        raise argparse.ArgumentTypeError(f"Expected NODE_ID.PROPERTY=VALUE, got {text!r}")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return int(node_id), name, value


async def run(args: argparse.Namespace) -> int:
    settings = ClientSettings.from_env()
    if args.server:
        settings.url = args.server
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    async with ComfyClient(settings=settings) as client:
        await client.wait_connected(timeout=args.timeout)
        await client.fetch_catalog()

        path = Path(args.workflow)
        if path.suffix.lower() == ".png":
            graph, missing = client.graph_from_png(path)
        else:
            graph, missing = client.graph_from_json_file(path)
        if missing:
            logger.warning("Server does not know node types: %s", ", ".join(missing))

        for node_id, name, value in args.set or []:
            node = graph.get_node(node_id)
            prop = node.get_property(name) if node else None
            if prop is None:
                logger.error("Node %d has no property %r", node_id, name)
                return 1
            prop.set_value(value)

        item = await client.queue_prompt(graph)
        async for event in item.events():
            if isinstance(event, StartedEvent):
                logger.info("Start executing prompt %s", event.prompt_id)
            elif isinstance(event, ExecutingEvent):
                logger.info("Executing node %s (%s)", event.node_id, event.title)
            elif isinstance(event, ProgressEvent):
                print(f"\rprogress: {event.value}/{event.max}", end="", file=sys.stderr)
            elif isinstance(event, DataEvent):
                for output in event.files:
                    data = await client.get_image(output)
                    (output_dir / Path(output.filename).name).write_bytes(data)
                    logger.info("Saved %s", output.filename)
            elif isinstance(event, StoppedEvent):
                if event.exception is not None:
                    logger.error("%s", event.exception)
                    return 1
                logger.info("Prompt %s %s", event.prompt_id, event.reason.value)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run a ComfyUI workflow")
    parser.add_argument("-s", "--server", help="ComfyUI address (default: $COMFY_URL)")
    parser.add_argument("-w", "--workflow", required=True, help="workflow JSON or PNG file")
    parser.add_argument("-o", "--output", default="outputs", help="directory for outputs")
    parser.add_argument("--timeout", type=float, default=30.0, help="connect timeout in seconds")
    parser.add_argument(
        "--set", action="append", type=parse_assignment, metavar="ID.NAME=VALUE",
        help="override a node property",
    )
    args = parser.parse_args()
    try:
        return asyncio.run(run(args))
    except (ComfyError, asyncio.TimeoutError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
