"""
Datastore command-line tool.

Commands:
- get: Look up entities by path
- put: Write an entity (an incomplete path inserts with a generated id)
- delete: Delete entities by path
- query: Run a query
- encode-key / decode-key: Convert between paths and encoded keys

Usage:
    datastore-cli --dataset my-dataset get Account:alice Account:bob
    datastore-cli put Account:alice/Task --set title=Ship --index title
    datastore-cli query --kind Task --ancestor Account:alice --order title:desc
    datastore-cli encode-key Account:alice/Task:42

Paths are written Kind:ident/Kind:ident; an all-digit ident is an id, any
other ident a name. Connection settings come from DATASTORE_* environment
variables and may be overridden with flags.

Invariants:
    - Output is JSON on stdout
    - A DatastoreError exits with code 1
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from typing import Any, Sequence

import json_log_formatter

from ..client import DatastoreClient
from ..config import DatastoreSettings
from ..entity import Entity, entity_to_dict
from ..errors import DatastoreError, InvalidPathError
from ..keys import Key, decode_key, encode_key

logger = logging.getLogger(__name__)


def setup_logging(level: str = "WARNING", fmt: str = "text") -> None:
    """Configure root logging for the CLI.

    Args:
        level: Log level name
        fmt: "text" or "json"
    """
    if fmt == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("grpc").setLevel(logging.WARNING)


def parse_path(text: str) -> list[tuple[str, int | str | None]]:
    """Parse Kind:ident/Kind:ident into (kind, id_or_name) pairs.

    The final element may be a bare Kind, leaving the key incomplete.

    Raises:
        InvalidPathError: If the text is not a valid path
    """
    elements: list[tuple[str, int | str | None]] = []
    segments = text.strip("/").split("/") if text.strip("/") else []
    for i, segment in enumerate(segments):
        kind, sep, ident = segment.partition(":")
        if not kind:
            raise InvalidPathError(f"Path segment '{segment}' has no kind", index=i)
        if not sep:
            if i != len(segments) - 1:
                raise InvalidPathError(f"Path segment '{segment}' has no id or name", index=i)
            elements.append((kind, None))
        elif ident.isdigit():
            elements.append((kind, int(ident)))
        else:
            elements.append((kind, ident))
    if not elements:
        raise InvalidPathError(f"Empty path: '{text}'")
    return elements


def format_path(key: Key) -> str:
    """Inverse of parse_path."""
    parts = []
    for element in key.path:
        if element.is_complete:
            parts.append(f"{element.kind}:{element.id_or_name}")
        else:
            parts.append(element.kind)
    return "/".join(parts)


def parse_assignment(text: str) -> tuple[str, Any]:
    """Parse name=value; the value is read as JSON when possible."""
    name, sep, raw = text.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Expected name=value, got '{text}'")
    try:
        return name, json.loads(raw)
    except ValueError:
        return name, raw


def _json_default(value: Any) -> Any:
    if isinstance(value, Key):
        return format_path(value)
    if isinstance(value, Entity):
        return entity_to_dict(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _entity_json(entity: Entity) -> dict[str, Any]:
    return {
        "key": format_path(entity.key) if entity.key is not None else None,
        "properties": entity_to_dict(entity),
    }


class DatastoreCLI:
    """Command implementations for the datastore CLI.

    Each command returns a JSON-serializable result.

    Example:
        >>> cli = DatastoreCLI(client)
        >>> await cli.get(["Account:alice"])
        {'Account:alice': {'plan': 'pro'}}
    """

    def __init__(self, client: DatastoreClient) -> None:
        self.client = client

    def _key(self, path: str, *, allow_incomplete: bool = False) -> Key:
        return self.client.make_key(parse_path(path), allow_incomplete=allow_incomplete)

    async def get(self, paths: Sequence[str]) -> dict[str, Any]:
        keys = {path: self._key(path) for path in paths}
        results = await self.client.get_entities(keys.values())
        output: dict[str, Any] = {}
        for path, key in keys.items():
            entity = results.get(encode_key(key))
            output[path] = entity_to_dict(entity) if entity is not None else None
        return output

    async def put(
        self,
        path: str,
        assignments: Sequence[tuple[str, Any]],
        indexed: Sequence[str] = (),
    ) -> dict[str, Any]:
        key = self._key(path, allow_incomplete=True)
        entity = self.client.build_entity(dict(assignments), indexed, key)
        if key.is_complete:
            await self.client.write_entity(entity)
            return {"key": format_path(key)}
        generated = await self.client.insert_auto_id(entity)
        return {"key": format_path(generated) if generated is not None else None}

    async def delete(self, paths: Sequence[str]) -> dict[str, Any]:
        keys = [self._key(path) for path in paths]
        await self.client.delete_multi(keys)
        return {"deleted": [format_path(k) for k in keys]}

    async def query(
        self,
        kind: str | None,
        where: Sequence[tuple[str, Any]] = (),
        ancestor: str | None = None,
        orders: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
        group_by: Sequence[str] = (),
        project: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        order_items = []
        for order in orders:
            name, _, direction = order.partition(":")
            order_items.append((name, direction or "asc"))
        query = self.client.build_query(
            kind,
            dict(where),
            ancestor=parse_path(ancestor) if ancestor else None,
            orders=order_items,
            limit=limit,
            offset=offset,
            group_by=list(group_by),
            required_properties=project,
        )
        return [_entity_json(e) for e in await self.client.run_query(query)]

    def encode_key(self, path: str) -> str:
        return encode_key(self._key(path, allow_incomplete=True))

    def decode_key(self, encoded: str) -> dict[str, Any]:
        key = decode_key(encoded)
        return {"path": format_path(key), "namespace": key.namespace}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Datastore command-line client")
    parser.add_argument("--dataset", help="Dataset identifier (env: DATASTORE_DATASET)")
    parser.add_argument("--host", help="API host (env: DATASTORE_HOST)")
    parser.add_argument("--namespace", help="Key namespace (env: DATASTORE_NAMESPACE)")
    parser.add_argument(
        "--transport", choices=["http", "grpc"], help="RPC transport (env: DATASTORE_TRANSPORT)"
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level")
    parser.add_argument("--log-format", choices=["text", "json"], default="text")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # get command
    get_parser = subparsers.add_parser("get", help="Look up entities by path")
    get_parser.add_argument("paths", nargs="+", help="Entity paths")

    # put command
    put_parser = subparsers.add_parser("put", help="Write an entity")
    put_parser.add_argument("path", help="Entity path; a bare final Kind generates an id")
    put_parser.add_argument(
        "--set", dest="assignments", action="append", type=parse_assignment, default=[],
        metavar="NAME=VALUE", help="Property value",
    )
    put_parser.add_argument(
        "--index", action="append", default=[], metavar="NAME", help="Property to index"
    )

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete entities by path")
    delete_parser.add_argument("paths", nargs="+", help="Entity paths")

    # query command
    query_parser = subparsers.add_parser("query", help="Run a query")
    query_parser.add_argument("--kind", help="Kind to query")
    query_parser.add_argument(
        "--where", action="append", type=parse_assignment, default=[],
        metavar="NAME=VALUE", help="Equality filter",
    )
    query_parser.add_argument("--ancestor", help="Ancestor path")
    query_parser.add_argument(
        "--order", action="append", default=[], metavar="NAME[:desc]", help="Sort order"
    )
    query_parser.add_argument("--limit", type=int, help="Maximum results")
    query_parser.add_argument("--offset", type=int, default=0, help="Results to skip")
    query_parser.add_argument("--group-by", action="append", default=[], metavar="NAME")
    query_parser.add_argument(
        "--project", action="append", metavar="NAME", help="Property to return"
    )

    # key commands
    encode_parser = subparsers.add_parser("encode-key", help="Encode a path as a key string")
    encode_parser.add_argument("path", help="Entity path")
    decode_parser = subparsers.add_parser("decode-key", help="Decode a key string")
    decode_parser.add_argument("key", help="Encoded key")

    return parser


def _settings(args: argparse.Namespace) -> DatastoreSettings:
    overrides = {
        name: getattr(args, name)
        for name in ("dataset", "host", "namespace", "transport")
        if getattr(args, name) is not None
    }
    return DatastoreSettings(**overrides)


async def _run(args: argparse.Namespace) -> Any:
    async with DatastoreClient(_settings(args)) as client:
        cli = DatastoreCLI(client)
        if args.command == "get":
            return await cli.get(args.paths)
        elif args.command == "put":
            return await cli.put(args.path, args.assignments, args.index)
        elif args.command == "delete":
            return await cli.delete(args.paths)
        elif args.command == "query":
            return await cli.query(
                args.kind,
                args.where,
                ancestor=args.ancestor,
                orders=args.order,
                limit=args.limit,
                offset=args.offset,
                group_by=args.group_by,
                project=args.project,
            )
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_format)

    try:
        if args.command == "encode-key":
            result: Any = DatastoreCLI(DatastoreClient(_settings(args))).encode_key(args.path)
        elif args.command == "decode-key":
            result = DatastoreCLI(DatastoreClient(_settings(args))).decode_key(args.key)
        else:
            result = asyncio.run(_run(args))
    except DatastoreError as e:
        logger.debug(f"Command failed: {e.code}")
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result, indent=2, sort_keys=True, default=_json_default))


if __name__ == "__main__":
    main()
