from __future__ import annotations

import argparse
import asyncio
import re
import sys
from pathlib import Path
from typing import Any, List, Sequence, Tuple

import yaml

from . import metrics
from .client import close_docker_client, create_docker_client
from .config import Config, add_config_arguments, build_overrides, configure
from .errors import SandboxError
from .logging_utils import get_logger, setup_logging
from .pipeline import ExecutionPipeline, ExecutionRequest, render
from .pool import ContainerPool
from .profile import LanguageCatalog
from .sweep import list_sandboxes, sweep_orphans

logger = get_logger(__name__)

FENCED_BLOCK = re.compile(r"^```(?P<language>[0-9a-zA-Z]*)\n(?P<code>(?:\n|.)+)\n```$")


class _StdoutSink:
    async def notify(self, text: str) -> None:
        print(text, flush=True)


def parse_fenced(message: str) -> Tuple[str, str] | None:
    """Split a chat message of the form ```` ```lang\\ncode\\n``` ````."""
    match = FENCED_BLOCK.match(message.strip("\r\n"))
    if match is None:
        return None
    return match.group("language"), match.group("code")


def _parse_attachment(value: str) -> Tuple[Path, str]:
    local, sep, remote = value.partition(":")
    path = Path(local)
    return path, remote if sep else f"/{path.name}"


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _write_outputs(output_dir: Path, attachments: Sequence[Any]) -> None:
    output_dir.mkdir(parents=True, exist_ok=True)
    for artifact in attachments:
        target = output_dir / artifact.filename
        target.write_bytes(artifact.data)
        print(f"wrote {target}")


async def _prewarm_configured(pool: ContainerPool, cfg: Config, catalog: LanguageCatalog) -> None:
    for alias in cfg.pool.prewarm:
        profile = catalog.get(alias)
        if profile is None:
            logger.warning("prewarm alias %s is not in the language catalog", alias)
            continue
        try:
            await pool.prewarm(profile)
        except SandboxError as exc:
            logger.warning("prewarm of %s failed: %s", alias, exc)


async def _run(args: argparse.Namespace, cfg: Config, client: Any) -> int:
    catalog = cfg.catalog()
    text = _read_source(args.source)
    alias = args.language
    if alias is None:
        parsed = parse_fenced(text)
        if parsed is None:
            print("source is not a fenced code block; pass --language", file=sys.stderr)
            return 2
        alias, text = parsed
    profile = catalog.get(alias)
    if profile is None:
        print(f"unknown language: {alias}", file=sys.stderr)
        return 2

    attachments = []
    for item in args.attach:
        local, remote = _parse_attachment(item)
        attachments.append((remote, local.read_bytes()))

    swept = await asyncio.to_thread(sweep_orphans, client, cfg.sandbox)
    if swept:
        logger.info("removed %d leftover sandbox container(s)", swept)

    pool = ContainerPool(client, sandbox=cfg.sandbox, settings=cfg.pool)
    pipeline = ExecutionPipeline(pool, cfg.pipeline)
    try:
        await _prewarm_configured(pool, cfg, catalog)
        result = await pipeline.execute(
            ExecutionRequest(
                profile=profile,
                source=text,
                attachments=attachments,
                requested_paths=args.fetch,
                timeout=args.timeout,
            ),
            sink=_StdoutSink(),
        )
    except SandboxError as exc:
        print(f"execution failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await pool.close()

    report = render(result, cfg.pipeline)
    print(report.content)
    if report.attachments:
        _write_outputs(Path(args.output_dir), report.attachments)
    return 0


def _ps(args: argparse.Namespace, client: Any) -> int:
    for summary in list_sandboxes(client, running_only=not args.all):
        if args.all:
            print(f"{summary.name} {summary.image} {summary.status}")
        else:
            print(f"{summary.name} {summary.image}")
    return 0


def _sweep(args: argparse.Namespace, cfg: Config, client: Any) -> int:
    removed = sweep_orphans(client, cfg.sandbox)
    print(f"removed {removed} container(s)")
    return 0


async def _prewarm(args: argparse.Namespace, cfg: Config, client: Any) -> int:
    """Provision one container per language and discard them again."""
    catalog = cfg.catalog()
    aliases = args.aliases or cfg.pool.prewarm
    pool = ContainerPool(client, sandbox=cfg.sandbox, settings=cfg.pool)
    status = 0
    try:
        for alias in aliases:
            profile = catalog.get(alias)
            if profile is None:
                print(f"unknown language: {alias}", file=sys.stderr)
                status = 2
                continue
            try:
                container = await pool.prewarm(profile)
            except SandboxError as exc:
                print(f"{alias}: {exc}", file=sys.stderr)
                status = 1
                continue
            print(f"{alias}: {container.name} ({profile.image})")
    finally:
        await pool.close()
    return status


def _languages(cfg: Config) -> int:
    for profile in cfg.catalog():
        aliases = ", ".join(sorted(profile.aliases))
        steps = "compile+run" if profile.compile is not None else "run"
        print(f"{profile.name}\t{profile.image}\t{steps}\t{aliases}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dockerbot", description="Run code snippets inside disposable Docker containers"
    )
    add_config_arguments(parser)
    parser.add_argument("--log-level", help="logging level for console output")
    parser.add_argument(
        "--metrics-port", type=int, help="expose Prometheus metrics on this port"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="execute a source file in a sandbox")
    p_run.add_argument("source", help="source file, or - for stdin")
    p_run.add_argument(
        "-l",
        "--language",
        help="language alias; when omitted the source must be a fenced code block",
    )
    p_run.add_argument(
        "-a",
        "--attach",
        action="append",
        default=[],
        metavar="LOCAL[:PATH]",
        help="upload a local file before running (repeatable)",
    )
    p_run.add_argument(
        "-f",
        "--fetch",
        action="append",
        default=[],
        metavar="PATH",
        help="download PATH from the container after the run (repeatable)",
    )
    p_run.add_argument("--timeout", type=float, help="run timeout in seconds")
    p_run.add_argument(
        "-o", "--output-dir", default=".", help="directory receiving attachments"
    )

    p_ps = sub.add_parser("ps", help="list sandbox containers")
    p_ps.add_argument("--all", action="store_true", help="include stopped containers")

    sub.add_parser("sweep", help="remove leftover sandbox containers")

    p_prewarm = sub.add_parser(
        "prewarm", help="check that containers can be provisioned for languages"
    )
    p_prewarm.add_argument("aliases", nargs="*", help="language aliases (default: pool.prewarm)")

    sub.add_parser("languages", help="list the language catalog")
    return parser


def main(argv: List[str] | None = None) -> int:
    """Entry point for command line execution."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        cfg = configure(args.config_file, build_overrides(args.config_override))
    except (OSError, ValueError, yaml.YAMLError) as exc:
        parser.error(str(exc))
    setup_logging(level=args.log_level or cfg.logging.verbosity)
    if args.metrics_port:
        metrics.serve(args.metrics_port)

    if args.cmd == "languages":
        return _languages(cfg)

    try:
        client = create_docker_client(cfg.docker)
    except SandboxError as exc:
        print(f"docker unavailable: {exc}", file=sys.stderr)
        return 1
    try:
        if args.cmd == "run":
            return asyncio.run(_run(args, cfg, client))
        if args.cmd == "ps":
            return _ps(args, client)
        if args.cmd == "sweep":
            return _sweep(args, cfg, client)
        if args.cmd == "prewarm":
            return asyncio.run(_prewarm(args, cfg, client))
    except SandboxError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        close_docker_client(client)
    parser.error(f"unknown command {args.cmd}")
    return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
