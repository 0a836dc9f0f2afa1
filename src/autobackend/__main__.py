"""Command line entry point: ``python -m autobackend requirements.md -o out``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from autobackend.agent.context import PipelineContext
from autobackend.agent.controller import PipelineController
from autobackend.agent.listeners import LoggingListener
from autobackend.agent.state import PHASES, PipelineState
from autobackend.compiler.document import DOCUMENT_FILE
from autobackend.errors import PipelineCancelledError
from autobackend.utils.fileops import write_generated_files

logger = logging.getLogger("autobackend")


def collect_files(state: PipelineState) -> Dict[str, str]:
    files: Dict[str, str] = {}
    for phase in PHASES:
        slot = state.slot(phase)
        if slot is None:
            continue
        artifact = slot.artifact
        if phase == "interface":
            files[DOCUMENT_FILE] = artifact.document.model_dump_json(by_alias=True, indent=2)
        else:
            files.update(artifact.files)
    return files


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="autobackend", description=__doc__)
    parser.add_argument("requirements", type=Path, help="Markdown/text file with the requirements")
    parser.add_argument("-o", "--output", type=Path, default=Path("generated"), help="Output directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> int:
    ctx = PipelineContext()
    ctx.bus.subscribe("*", LoggingListener())
    controller = PipelineController(ctx)
    requirements = args.requirements.read_text(encoding="utf-8")
    try:
        result = await controller.run(requirements)
    except PipelineCancelledError:
        logger.warning("Pipeline cancelled")
        return 130

    written = write_generated_files(args.output, collect_files(ctx.state))
    logger.info("Wrote %d file(s) to %s", len(written), args.output)
    print(json.dumps(ctx.usage.to_json()["facade"], indent=2))
    if result.get("failed"):
        logger.error("Pipeline stopped at %s: %s", result["failed"], result.get("error"))
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
