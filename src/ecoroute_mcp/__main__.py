"""ecoroute MCP Server entry point."""

import asyncio
import json
import sys


def _setup_logging() -> None:
    from loguru import logger

    from ecoroute_mcp.config import settings

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


async def _detect(query: str) -> int:
    from ecoroute_mcp.errors import NoEcosystemsConfiguredError
    from ecoroute_mcp.router import create_router

    router = create_router()
    try:
        result = await router.detect(query)
    except NoEcosystemsConfiguredError as e:
        print(json.dumps({"error": str(e)}))
        return 1
    finally:
        router.close()

    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0


async def _check() -> int:
    """Run the routing checks against the configured catalog.

    Run this after changing the catalog or providers:
        uvx ecoroute-mcp check
    """
    from ecoroute_mcp.harness import run_cases
    from ecoroute_mcp.router import create_router

    router = create_router()
    try:
        report = await run_cases(router)
    finally:
        router.close()

    for outcome in report.outcomes:
        mark = "PASS" if outcome.passed else "FAIL"
        line = f"  [{mark}] {outcome.case.query!r} -> "
        if outcome.result is not None:
            line += (
                f"{outcome.result.ecosystem.id} "
                f"({outcome.result.confidence}%, {outcome.result.stage}, "
                f"{outcome.duration_ms}ms)"
            )
        else:
            line += f"error: {outcome.error}"
        if not outcome.passed:
            line += f" expected {outcome.case.expected}"
        print(line)
        for mismatch in outcome.mismatches:
            print(f"         mismatch: {mismatch}")
        if outcome.result is not None and outcome.result.suggested_doc_sources:
            sources = ", ".join(outcome.result.suggested_doc_sources)
            print(f"         sources: {sources}")

    print(f"{report.passed}/{report.total} routing checks passed")
    return 0 if report.ok else 1


def _cli() -> None:
    """CLI dispatcher: server (default), detect <query>, or check subcommand."""
    command = sys.argv[1] if len(sys.argv) >= 2 else "serve"

    if command == "detect":
        if len(sys.argv) < 3:
            print("Usage: ecoroute-mcp detect <query>", file=sys.stderr)
            sys.exit(2)
        _setup_logging()
        sys.exit(asyncio.run(_detect(" ".join(sys.argv[2:]))))
    elif command == "check":
        _setup_logging()
        sys.exit(asyncio.run(_check()))
    else:
        from ecoroute_mcp.server import main

        main()


if __name__ == "__main__":
    _cli()
