"""Entry point: wires argument parsing, configuration and operations together."""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
from datetime import datetime
from typing import Any, Optional, Sequence

from . import api
from .cache import CacheStore
from .cli import parse_args
from .config import DownloadOptions, QueryOptions, load_settings, parse_csv, parse_repository
from .errors import BuildStatsError, CacheCorruptError, ConfigurationError, DownloadFailed, ProviderError
from .stats import render_buckets, render_history, render_success

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_CACHE = 3
EXIT_PROVIDER = 4
EXIT_INTERRUPTED = 130


def _to_jsonable(value: Any) -> Any:
    """Convert dataclasses (including their computed rates) into JSON-ready values."""
    if dataclasses.is_dataclass(value):
        data = {field.name: _to_jsonable(getattr(value, field.name)) for field in dataclasses.fields(value)}
        for derived in ("duration_seconds", "total_count", "success_rate"):
            if hasattr(value, derived):
                data[derived] = getattr(value, derived)
        return data
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run one build-stats command and return the process exit code."""
    try:
        args = parse_args(argv)
        _configure_logging(args.verbose)

        identity = parse_repository(args.repository)
        settings = load_settings(credential=args.auth)
        store = CacheStore(settings.cache_dir)
        query = QueryOptions(
            branches=parse_csv(args.branch),
            results=parse_csv(args.result),
            period_days=args.period,
            period_count=args.last,
            threshold_seconds=args.threshold,
        )

        output: Any
        text: str
        if args.command == "download":
            result = api.download(
                identity,
                DownloadOptions(credential=settings.credential, concurrency=args.concurrency, since=args.since),
                store=store,
            )
            output = result
            text = (
                f"Downloaded {result.fetched} builds for {identity} "
                f"(latest build: {result.high_water_mark if result.high_water_mark is not None else 'none'})."
            )
        elif args.command == "calculate":
            buckets = api.calculate(identity, query, store=store)
            output = buckets
            text = render_buckets(identity, buckets, period_days=args.period)
        elif args.command == "history":
            records = api.history(identity, query, store=store)
            output = records
            text = render_history(records, threshold_seconds=args.threshold)
        elif args.command == "success":
            summary = api.success(identity, query, store=store)
            output = summary
            text = render_success(summary)
        elif args.command == "clean":
            api.clean(identity, store=store)
            output = {"cleaned": str(identity)}
            text = f"Deleted cached history of {identity}."
        else:
            location = api.cache_location(identity, store=store)
            output = {"cache": str(location)}
            text = str(location)

        if args.json:
            print(json.dumps(_to_jsonable(output), indent=2))
        else:
            print(text)

        return EXIT_OK
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except CacheCorruptError as exc:
        print(f"ERROR: {exc}. Run the 'clean' command and download again.", file=sys.stderr)
        return EXIT_CACHE
    except DownloadFailed as exc:
        print(f"ERROR: {exc}. Progress was saved; run 'download' again to resume.", file=sys.stderr)
        return EXIT_PROVIDER
    except ProviderError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_PROVIDER
    except BuildStatsError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected failure")
        print("ERROR: unexpected failure, see the log above.", file=sys.stderr)
        return EXIT_UNEXPECTED


if __name__ == "__main__":
    raise SystemExit(main())
