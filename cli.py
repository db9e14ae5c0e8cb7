from s3ship.config import load_config
from s3ship.errors import DeployError
from s3ship.models.target import TriggerContext
from s3ship.services import archiver
from s3ship.services.orchestrator import Orchestrator
from s3ship.services.run_history import RunHistory
from s3ship.services.target_resolver import TargetResolver
from pathlib import Path
import json
import argparse
import os
import logging
import sys

logger = logging.getLogger("s3ship")


def _save_to_json(data: dict, filename: str) -> bool:
    try:
        with open(filename, 'w') as f:
            # str default for datetime
            json.dump(data, f, indent=2, default=str)
        return True
    except OSError as e:
        print(f"An error occured saving report as json: {e}")
        return False


def _load_trigger(args) -> TriggerContext:
    """
    Trigger context from --trigger FILE ({"branch", "commitSHA",
    "environmentOverride"}) with command line flags taking precedence.
    """
    data = {}
    if getattr(args, 'trigger', None):
        try:
            with open(args.trigger, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DeployError(f"cannot read trigger file {args.trigger}: {e}") from e
    branch = args.branch or data.get('branch')
    if not branch:
        raise DeployError("a branch is required (--branch or --trigger)")
    return TriggerContext(
        branch=branch,
        commit_sha=getattr(args, 'commit', None) or data.get('commitSHA', ''),
        environment_override=args.environment or data.get('environmentOverride'),
    )


def _archive_name(p: str, flatten: bool) -> str:
    """
    Path a --files entry gets inside the zip. Absolute paths are stored
    relative to the working directory; ones outside it need --flatten.
    """
    path = Path(p)
    if flatten:
        return path.name
    if not path.is_absolute():
        return p
    rel = os.path.relpath(path, Path.cwd())
    if rel == os.curdir or rel.split(os.sep)[0] == os.pardir:
        raise DeployError(f"{p} is outside the working directory; use --flatten or --source")
    return Path(rel).as_posix()


def _collect_sources(args):
    if args.files:
        return [(_archive_name(p, args.flatten), Path(p)) for p in args.files]
    return archiver.collect_files(args.source, exclude=args.exclude or ())


def deploy(args) -> int:
    """
    package the sources and publish them to every target the trigger selects
    """
    config = load_config(args.config)
    trigger = _load_trigger(args)
    history = RunHistory(args.history_db) if args.history_db else None

    orchestrator = Orchestrator(config, history=history)
    run = orchestrator.run(trigger, _collect_sources(args), timeout=args.timeout)

    report = run.to_dict()
    print(json.dumps(report, indent=2))
    if args.report:
        _save_to_json(report, args.report)
    return run.status.exit_code


def pack(args) -> int:
    artifact = archiver.pack(_collect_sources(args))
    archiver.write_artifact(artifact, args.output)
    print(f"Packed {len(artifact.manifest)} files into {args.output}")
    print(artifact.content_hash)
    if args.manifest:
        _save_to_json(artifact.describe(), args.manifest)
    return 0


def plan(args) -> int:
    config = load_config(args.config)
    trigger = _load_trigger(args)
    levels = TargetResolver(config.targets).resolve_levels(trigger)
    for depth, level in enumerate(levels):
        for target in level:
            deps = ', '.join(sorted(target.depends_on)) or '-'
            print(f"{depth}\t{target.name}\t{target.destination_uri}\tdepends on: {deps}")
    return 0


def history(args) -> int:
    runs = RunHistory(args.history_db).recent(limit=args.limit)
    print(json.dumps(runs, indent=2, default=str))
    return 0


def _add_source_args(p):
    group = p.add_mutually_exclusive_group(required=True)
    group.add_argument('--source', '-s', help='Directory to package')
    group.add_argument('--files', nargs='+', help='Individual files to package')
    p.add_argument('--flatten', action='store_true',
                   help='With --files, store files by name only')
    p.add_argument('--exclude', action='append',
                   help='Glob of paths to leave out (repeatable)')


def _add_trigger_args(p):
    p.add_argument('--config', '-c', required=True, help='Target configuration (JSON)')
    p.add_argument('--branch', '-b', help='Branch that triggered the deployment')
    p.add_argument('--environment', '-e', help='Deploy to this environment only')
    p.add_argument('--trigger', help='JSON file with the trigger context')


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog='s3ship',
        description='Package static files into a reproducible zip and '
        '          publish it to S3 deployment targets in dependency order.'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(
        dest='command',
        help='Available commands'
    )

    deploy_parser = subparsers.add_parser('deploy', help='Package and upload to all matching targets')
    _add_trigger_args(deploy_parser)
    _add_source_args(deploy_parser)
    deploy_parser.add_argument('--commit', help='Commit SHA of the release')
    deploy_parser.add_argument('--timeout', type=float, help='Cancel in-flight uploads after N seconds')
    deploy_parser.add_argument('--report', '-o', help='Also write the run report to this file')
    deploy_parser.add_argument('--history-db', help='SQLAlchemy URL to record the run in')
    deploy_parser.set_defaults(func=deploy)

    pack_parser = subparsers.add_parser('pack', help='Build the artifact locally and print its hash')
    _add_source_args(pack_parser)
    pack_parser.add_argument('--output', '-o', default='artifact.zip', help='Zip file to write')
    pack_parser.add_argument('--manifest', help='Also write the file manifest and hash to this JSON file')
    pack_parser.set_defaults(func=pack)

    plan_parser = subparsers.add_parser('plan', help='Show the target levels a trigger would deploy')
    _add_trigger_args(plan_parser)
    plan_parser.set_defaults(func=plan)

    history_parser = subparsers.add_parser('history', help='List recorded deployment runs')
    history_parser.add_argument('--history-db', required=True, help='SQLAlchemy URL of the history database')
    history_parser.add_argument('--limit', type=int, default=20)
    history_parser.set_defaults(func=history)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    # execute the passed function
    try:
        code = args.func(args)
    except DeployError as e:
        print(f"s3ship: {type(e).__name__}: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    main()
