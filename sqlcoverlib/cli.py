import argparse
import logging
import sys
from pathlib import Path

import yaml

from sqlcoverlib import LOG_FORMAT
from sqlcoverlib.config import CoverageConfig
from sqlcoverlib.coverage import CodeCoverage
from sqlcoverlib.models import CoverageResult


def summarize(result: CoverageResult) -> dict:
    return {
        "database": result.database_name,
        "overall": result.overall.model_dump(),
        "objects": {
            o.name: {
                "hit_count": o.stats.hit_count,
                "total": o.stats.total,
                "percentage": round(o.stats.percentage, 2),
                "missed_lines": sorted({s.start_line for s in o.spans if not s.executed}),
            }
            for o in result.objects
        },
        "diagnostics": [str(d) for d in result.diagnostics],
    }


def load_config(args) -> CoverageConfig:
    if args.config:
        config = CoverageConfig.from_yaml(args.config)
    else:
        if not args.connection or not args.database:
            raise SystemExit("--connection and --database are required without --config")
        config = CoverageConfig(connection=args.connection, database=args.database).with_env_overrides()

    update = {}
    if args.connection:
        update["connection"] = args.connection
    if args.database:
        update["database"] = args.database
    if args.exclude:
        update["exclude_filter"] = config.exclude_filter + args.exclude
    if args.logging:
        update["logging"] = True
    if args.dispatch_latency is not None:
        update["dispatch_latency_seconds"] = args.dispatch_latency
    if args.workers is not None:
        update["max_workers"] = args.workers
    if not update:
        return config
    return CoverageConfig.model_validate({**config.model_dump(), **update})


def cli_main(argv=None):
    parser = argparse.ArgumentParser(prog="sqlcover", description="Statement coverage of SQL Server modules")
    parser.add_argument("--config", type=Path, default=None, help="YAML file with the coverage configuration")
    parser.add_argument("--connection", type=str, default=None, help="SQLAlchemy URL or ODBC connection string")
    parser.add_argument("--database", type=str, default=None)
    parser.add_argument("--exclude", action="append", default=None, help="Object name pattern to exclude (repeatable)")
    parser.add_argument("--logging", action="store_true", help="Log diagnostics while running")
    parser.add_argument("--dispatch-latency", type=float, default=None, help="Seconds to wait for trace events to be flushed")
    parser.add_argument("--workers", type=int, default=None, help="Threads used to segment module sources")

    workload = parser.add_mutually_exclusive_group(required=True)
    workload.add_argument("--command", type=str, help="T-SQL command to run as the workload")
    workload.add_argument("--exe", type=Path, help="Executable to run as the workload")
    parser.add_argument("--args", type=str, default="", help="Arguments passed to --exe")
    parser.add_argument("--cwd", type=Path, default=None, help="Working directory for --exe")
    args = parser.parse_args(argv)

    config = load_config(args)
    logging.basicConfig(level=logging.INFO if config.logging else logging.WARNING, format=LOG_FORMAT)

    coverage = CodeCoverage.from_config(config)
    if args.command:
        result = coverage.cover(args.command)
    else:
        result = coverage.cover_workload(args.exe, args.args, args.cwd)

    print(yaml.safe_dump(summarize(result), sort_keys=False))
    return 0


if __name__ == '__main__':
    sys.exit(cli_main())
