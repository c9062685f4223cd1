import argparse
import asyncio
import dataclasses
import json
import os
import sys
from typing import Any, Dict, Optional

import httpx

from web_toolkit.models import Region, TimeRange
from web_toolkit.settings import (
    ALL_TOOL_GROUPS,
    Settings,
    build_http_client,
    load_settings,
    parse_tool_list,
)
from web_toolkit.tools import build_registry

from logging import getLogger, basicConfig, INFO, WARNING

basicConfig(level=WARNING, format="[%(levelname)s](%(name)s): %(message)s", force=True)
logger = getLogger("web_toolkit.main")
getLogger("web_toolkit").setLevel(INFO)


def _print(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


async def call_tool(settings: Settings, group: str, name: str, arguments: Dict[str, Any]) -> int:
    # サーバと同じ build_registry で組み立てて1回だけ呼ぶ
    async with build_http_client(settings) as client:
        registry = build_registry(client, settings, enabled=[group])
        payload = await registry.call(name, arguments)
    _print(payload)
    return 1 if payload.get("error_message") else 0


async def run_search(args: argparse.Namespace) -> int:
    settings = load_settings()
    settings = dataclasses.replace(
        settings,
        search_region=Region(args.region) if args.region else settings.search_region,
        search_max_results=args.max_results or settings.search_max_results,
    )
    return await call_tool(
        settings, "search", "search", {"query": args.query, "time_range": args.time_range}
    )


async def run_fetch(args: argparse.Namespace) -> int:
    return await call_tool(
        load_settings(),
        "fetch",
        "fetch",
        {
            "url": args.url,
            "format": args.format,
            "timeout": args.timeout,
            "render": args.render,
        },
    )


def run_server(args: argparse.Namespace) -> int:
    import uvicorn

    # server.py は startup 時に環境変数から設定を読む
    os.environ["ENABLED_TOOLS"] = ",".join(parse_tool_list(args.tools))
    uvicorn.run("server:app", host=args.host, port=args.port)
    return 0


def list_remote_tools(base_url: str, client: Optional[httpx.Client] = None) -> int:
    """
    起動中のサーバに繋いで /tools の一覧を表示する。
    """
    owns = client is None
    client = client or httpx.Client(timeout=10.0)
    try:
        r = client.get(f"{base_url.rstrip('/')}/tools")
        r.raise_for_status()
        tools = r.json()["tools"]
    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.error(f"failed to list tools from {base_url}: {e}")
        return 1
    finally:
        if owns:
            client.close()

    print(f"connected to {base_url}: {len(tools)} tool(s)")
    for t in tools:
        summary = (t.get("description") or "").splitlines()[:1]
        print(f"- {t['name']} [{t.get('group', '')}] {summary[0] if summary else ''}".rstrip())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="web-toolkit")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Start the tool server")
    p_serve.add_argument("--host", default="localhost")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument(
        "--tools",
        default=None,
        help=f"Comma-separated tool groups to enable ({','.join(ALL_TOOL_GROUPS)}). Defaults to all.",
    )

    p_tools = sub.add_parser("tools", help="List the tools of a running server")
    p_tools.add_argument("--host", default="localhost")
    p_tools.add_argument("--port", type=int, default=8000)

    p_search = sub.add_parser("search", help="Run one search and print JSON")
    p_search.add_argument("query")
    p_search.add_argument(
        "--time-range",
        default=TimeRange.ANY.value,
        help="any / d / w / m / y (day, week, month, year are accepted too)",
    )
    p_search.add_argument("--region", default=None, choices=[r.value for r in Region])
    p_search.add_argument("--max-results", type=int, default=None)

    p_fetch = sub.add_parser("fetch", help="Fetch one URL and print JSON")
    p_fetch.add_argument("url")
    p_fetch.add_argument("--format", default="text")
    p_fetch.add_argument("--timeout", type=float, default=None)
    p_fetch.add_argument("--render", action="store_true")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        unknown = [t for t in parse_tool_list(args.tools) if t not in ALL_TOOL_GROUPS]
        if unknown:
            logger.error(f"unknown tool group(s): {', '.join(unknown)}")
            return 2
        return run_server(args)
    if args.command == "tools":
        return list_remote_tools(f"http://{args.host}:{args.port}")
    if args.command == "search":
        return asyncio.run(run_search(args))
    return asyncio.run(run_fetch(args))


if __name__ == "__main__":
    sys.exit(main())
