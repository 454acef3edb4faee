"""``traycer-agent``: run one orchestration invocation from the command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .capabilities import CapabilityRegistry
from .compilation import AgentConfig, load_agent_config
from .error_handling import ConfigError, ErrorReporter
from .monitoring import TelemetryLogger
from .phases import MODES, PhaseRunner
from .provider_ir import ExecutionContext, LoopStatus, PhaseResult
from .provider_routing import PROVIDER_DEFAULTS, resolve_client_config
from .provider_runtime import LLMGateway


logger = logging.getLogger("traycer_agent")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="traycer-agent", description="Ask a tool-calling model about your workspace")
    parser.add_argument("request", nargs="*", help="Request text; a bare mode name (plan, review, phases) also works")
    parser.add_argument("--config", help="Path to YAML agent config")
    parser.add_argument("--workspace", default=os.getcwd(), help="Workspace root (default: current directory)")
    parser.add_argument("--mode", choices=MODES, help="Force a mode instead of inferring it from the request")
    parser.add_argument("--provider", choices=sorted(PROVIDER_DEFAULTS), help="Override llm.provider")
    parser.add_argument("--model", help="Override llm.model")
    parser.add_argument("--no-stream", action="store_true", help="Wait for the full answer instead of streaming")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser


def _apply_overrides(config: AgentConfig, args: argparse.Namespace) -> None:
    if not (args.provider or args.model):
        return
    provider = args.provider or config.llm.provider
    same_provider = provider == config.llm.provider
    config.llm = resolve_client_config(
        provider=provider,
        api_key=config.llm.api_key if same_provider else None,
        base_url=config.llm.base_url if same_provider else None,
        model=args.model or (config.llm.model if same_provider else None),
        timeout=config.llm.timeout,
    )


async def run(args: argparse.Namespace, config: AgentConfig) -> PhaseResult:
    reporter = ErrorReporter(logger)
    registry = CapabilityRegistry(args.workspace, reporter=reporter)
    telemetry = TelemetryLogger()
    runner = PhaseRunner(
        registry,
        LLMGateway(config.llm),
        reporter=reporter,
        max_iterations=config.max_iterations,
        telemetry=telemetry,
    )

    text = " ".join(args.request).strip()
    mode = args.mode or config.mode_policy.determine_mode(text)
    request = None if not text or config.mode_policy.is_mode_name(text) else text
    context = ExecutionContext(workspace_root=args.workspace)

    try:
        for name, server in config.servers.items():
            provider = await registry.register_user_provider(name, server)
            logger.info(f"External provider {name}: {provider.state.value}")

        if args.no_stream:
            result = await runner.execute_phase(mode, context, request=request)
            print(result.output)
        else:
            def on_chunk(chunk: str) -> None:
                sys.stdout.write(chunk)
                sys.stdout.flush()

            result = await runner.execute_phase_stream(mode, context, on_chunk, request=request)
            if result.status == LoopStatus.FATAL:
                print(result.output)
            else:
                print()
        return result
    finally:
        await registry.clear_user_providers()
        telemetry.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_dotenv()

    try:
        config = load_agent_config(args.config)
        _apply_overrides(config, args)
    except ConfigError as exc:
        print(f"Error: {exc.user_message()}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        result = asyncio.run(run(args, config))
    except KeyboardInterrupt:
        print("\nOperation interrupted by user", file=sys.stderr)
        return EXIT_FATAL

    print(f"[{result.status.value}] phase={result.phase} iterations={result.iterations}", file=sys.stderr)
    return EXIT_FATAL if result.status == LoopStatus.FATAL else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
