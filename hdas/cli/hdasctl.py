#!/usr/bin/env python3
"""
hdasctl - HDAS Open Monitor Control CLI

Commands:
    monitor         Run the openat probe and attribute what it reports
    list            List every cataloged path and its creator
    query           Search cataloged paths by pattern
    package         Show the paths a package created
    dir             Show cataloged paths under a directory
    orphans         Show paths created by packages that are no longer installed
    prune           Forget paths that no longer exist on disk
    stats           Database and configuration statistics
    classify        Show the probe's decision for one or more paths
    explain         Show how a path would be tracked
    config          Configuration management
    bpf             Print the generated BPF program

Usage:
    sudo hdasctl monitor
    hdasctl classify /home/alice/.cache/foo /etc/passwd
    hdasctl explain ~/.local/share/Steam/steamapps
    hdasctl config init
    hdasctl config validate
    hdasctl --json config show
    hdasctl bpf > monitor.bpf.c
    hdasctl package firefox
    hdasctl --json orphans

Environment:
    HDAS_CONFIG       Path to configuration file
    HDAS_DB           Path to the attribution database
    HDAS_VERBOSE      Enable verbose logging
    HDAS_LOG_JSON     Log as JSON lines
"""

import argparse
import json
import os
import sys
from datetime import datetime

import yaml

from hdas.attribution import PackageManager
from hdas.classifier import evaluate
from hdas.config import (
    ConfigError,
    default_config_path,
    get_user_home,
    load_config,
    validate_config,
    write_default_config,
)
from hdas.ebpf import render_program
from hdas.logging_config import configure_from_environment
from hdas.store import AttributionStore, StoreError
from hdas.tracking import expand_path, explain_path


def _load(args):
    return load_config(args.config)


def _config_path(args) -> str:
    return str(args.config) if args.config else str(default_config_path())


def _open_store(args) -> AttributionStore:
    return AttributionStore(args.db)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _format_time(timestamp: int) -> str:
    moment = datetime.fromtimestamp(timestamp)
    if moment.year == datetime.now().year:
        return moment.strftime("%b %d %H:%M")
    return moment.strftime("%b %d  %Y")


def _print_records(records) -> None:
    for record in records:
        mark = "✓" if record.exists else "✗"
        print(f"{_format_time(record.created_at)} [{mark}] {record.path} ({record.created_by_package})")
        if record.accessed_by_other:
            print(f"{_format_time(record.last_accessed_at)}      "
                  f"└─ last accessed by {record.last_accessed_by_package} "
                  f"({record.last_accessed_by_process})")


def _show_records(args, records, heading: str, empty: str) -> int:
    if args.json:
        _print_json([record.to_dict() for record in records])
    elif not records:
        print(empty)
    else:
        print(f"{heading} ({len(records)} total):\n")
        _print_records(records)
    return 0


def cmd_monitor(args):
    """Run the monitor."""
    if os.geteuid() != 0:
        print("Monitor requires root privileges. Run with sudo.", file=sys.stderr)
        return 1

    from hdas.monitor import HdasMonitor

    config = _load(args)
    with _open_store(args) as store:
        monitor = HdasMonitor(config, store=store)
        exit_code = monitor.run()
        if args.json:
            _print_json(monitor.get_stats())
    return exit_code


def cmd_list(args):
    """List every cataloged path."""
    with _open_store(args) as store:
        records = store.list_all()
    return _show_records(args, records, "Cataloged files",
                         "No files cataloged yet. Run 'sudo hdasctl monitor' to start tracking.")


def cmd_query(args):
    """Search cataloged paths."""
    with _open_store(args) as store:
        records = store.query_file(args.pattern)
    return _show_records(args, records, f"Files matching '{args.pattern}'",
                         f"No records found for: {args.pattern}")


def cmd_package(args):
    """Show the paths a package created."""
    with _open_store(args) as store:
        records = store.query_package(args.name)
    return _show_records(args, records, f"Files created by {args.name}",
                         f"No files found for package: {args.name}")


def cmd_dir(args):
    """Show cataloged paths under a directory."""
    directory = expand_path(args.path, get_user_home())
    with _open_store(args) as store:
        records = store.query_directory(directory)
    return _show_records(args, records, f"Files under {directory}",
                         f"No files found under: {directory}")


def cmd_orphans(args):
    """Show paths created by packages that are no longer installed."""
    manager = PackageManager.detect()
    if manager is None:
        print("No supported package manager found", file=sys.stderr)
        return 1
    installed = manager.list_installed()
    if installed is None:
        print(f"Could not list installed packages with {manager.value}", file=sys.stderr)
        return 1

    with _open_store(args) as store:
        orphans = [(package, store.query_package(package))
                   for package in store.get_orphans(installed)]

    if args.json:
        _print_json([
            {
                'package': package,
                'files': [{'path': r.path, 'exists': r.exists} for r in records],
                'total': len(records),
                'existing': sum(1 for r in records if r.exists),
                'deleted': sum(1 for r in records if not r.exists),
            }
            for package, records in orphans
        ])
        return 0

    if not orphans:
        print("No orphaned files found!")
        return 0

    print("Files from uninstalled packages:\n")
    for package, records in orphans:
        deleted = sum(1 for r in records if not r.exists)
        suffix = f", {deleted} already deleted" if deleted else ""
        print(f"{package} ({len(records)} file(s){suffix}):")
        for record in records:
            print(f"  {record.path}" + ("" if record.exists else " (deleted)"))
        print()
    return 0


def cmd_prune(args):
    """Forget paths that no longer exist."""
    with _open_store(args) as store:
        pruned = store.prune_deleted()
    if args.json:
        _print_json({'pruned': pruned})
    elif pruned:
        print(f"Pruned {pruned} deleted file(s) from database")
    else:
        print("No deleted files to prune")
    return 0


def cmd_stats(args):
    """Database and configuration statistics."""
    config = _load(args)
    with _open_store(args) as store:
        stats = store.get_stats()
    stats['config_path'] = _config_path(args)
    stats['monitored_dirs'] = [d.to_value() for d in config.monitored_dirs]
    stats['ignored_processes_count'] = len(config.ignored_processes)
    stats['tracking_depth'] = config.tracking_depth

    if args.json:
        _print_json(stats)
        return 0

    print("HDAS Database Statistics")
    print("========================")
    print(f"Database: {stats['database_path']} ({stats['database_size_bytes']} bytes)")
    print(f"Files tracked: {stats['files_tracked']}")
    print(f"Packages seen: {stats['packages_seen']}")
    print()
    print("Configuration")
    print("-------------")
    print(f"Config file: {stats['config_path']}")
    dirs = [d.path if d.depth is None else f"{d.path}(depth={d.depth})" for d in config.monitored_dirs]
    print(f"Monitored dirs: {', '.join(dirs)}")
    print(f"Ignored processes: {stats['ignored_processes_count']}")
    print(f"Tracking depth: {stats['tracking_depth']}")
    return 0


def cmd_classify(args):
    """Show the classifier/filter decision for each path."""
    rules = _load(args).to_rule_set()
    results = []
    for path in args.paths:
        decision = evaluate(path, rules)
        results.append(dict(path=path, **decision.to_dict()))

    if args.json:
        _print_json(results)
    else:
        for entry in results:
            if entry['emit']:
                verdict = "EMIT"
            elif entry['excluded']:
                verdict = "EXCLUDED"
            else:
                verdict = "IGNORED"
            print(f"{verdict:<9} {entry['path']}")

    return 0 if all(entry['emit'] for entry in results) else 1


def cmd_explain(args):
    """Show how a path would be tracked."""
    result = explain_path(args.path, _load(args), get_user_home())

    if args.json:
        _print_json(result.to_dict())
        return 0 if result.monitored else 1

    print(f"Input:     {result.input_path}")
    print(f"Expanded:  {result.expanded_path}")
    if not result.monitored:
        print("Not under any monitored directory")
        return 1
    print(f"Matched:   {result.matched_dir}")
    print(f"Depth:     {result.depth_used}")
    print(f"Tracked:   {result.tracked_path}")
    return 0


def cmd_config(args):
    """Configuration management."""
    if args.config_cmd == 'show':
        config = _load(args)
        if args.json:
            _print_json({
                'path': _config_path(args),
                'config': config.to_dict(),
                'rules': config.to_rule_set().describe(),
            })
        else:
            print(f"# {_config_path(args)}")
            print(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False), end="")

    elif args.config_cmd == 'init':
        path, written = write_default_config(args.config, overwrite=args.force)
        if written:
            print(f"Created config file: {path}")
        else:
            print(f"Config file already exists: {path} (use --force to overwrite)")
            return 1

    elif args.config_cmd == 'validate':
        config = _load(args)
        result = validate_config(config, home=get_user_home(), config_path=_config_path(args))
        if args.json:
            _print_json(result.to_dict())
        else:
            for finding in result.errors + result.warnings:
                print(f"  {finding}")
            print(result.summary())
        return 0 if result.is_valid else 1

    else:
        print("Usage: hdasctl config {show,init,validate}", file=sys.stderr)
        return 1


def cmd_bpf(args):
    """Print the generated BPF program."""
    print(render_program(_load(args).to_rule_set()), end="")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='hdasctl',
        description='HDAS Open Monitor Control CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', '-c', help='Config file path (default: $HDAS_CONFIG or ~/.config/hdas/config.yaml)')
    parser.add_argument('--db', help='Database path (default: $HDAS_DB or ~/.local/share/hdas/attributions.db)')
    parser.add_argument('--json', action='store_true', help='Machine-readable output')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # monitor
    monitor_parser = subparsers.add_parser('monitor', help='Run the open monitor (root)')
    monitor_parser.set_defaults(func=cmd_monitor)

    # catalogue queries
    list_parser = subparsers.add_parser('list', help='List cataloged paths')
    list_parser.set_defaults(func=cmd_list)

    query_parser = subparsers.add_parser('query', help='Search cataloged paths')
    query_parser.add_argument('pattern', help='Path fragment (SQL LIKE wildcards allowed)')
    query_parser.set_defaults(func=cmd_query)

    package_parser = subparsers.add_parser('package', help='Show paths a package created')
    package_parser.add_argument('name', help='Package name')
    package_parser.set_defaults(func=cmd_package)

    dir_parser = subparsers.add_parser('dir', help='Show cataloged paths under a directory')
    dir_parser.add_argument('path', help='Absolute, ~/ or home-relative directory')
    dir_parser.set_defaults(func=cmd_dir)

    orphans_parser = subparsers.add_parser('orphans', help='Show paths from uninstalled packages')
    orphans_parser.set_defaults(func=cmd_orphans)

    prune_parser = subparsers.add_parser('prune', help='Forget paths that no longer exist')
    prune_parser.set_defaults(func=cmd_prune)

    stats_parser = subparsers.add_parser('stats', help='Database and configuration statistics')
    stats_parser.set_defaults(func=cmd_stats)

    # classify
    classify_parser = subparsers.add_parser('classify', help='Show the decision for paths')
    classify_parser.add_argument('paths', nargs='+', help='Paths as the kernel would see them')
    classify_parser.set_defaults(func=cmd_classify)

    # explain
    explain_parser = subparsers.add_parser('explain', help='Show how a path is tracked')
    explain_parser.add_argument('path', help='Absolute, ~/ or home-relative path')
    explain_parser.set_defaults(func=cmd_explain)

    # config
    config_parser = subparsers.add_parser('config', help='Configuration management')
    config_sub = config_parser.add_subparsers(dest='config_cmd')
    config_sub.add_parser('show', help='Show effective configuration')
    init_parser = config_sub.add_parser('init', help='Create default configuration')
    init_parser.add_argument('--force', '-f', action='store_true', help='Overwrite an existing file')
    config_sub.add_parser('validate', help='Validate configuration')
    config_parser.set_defaults(func=cmd_config)

    # bpf
    bpf_parser = subparsers.add_parser('bpf', help='Print the generated BPF program')
    bpf_parser.set_defaults(func=cmd_bpf)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_from_environment(verbose=args.verbose)

    if not args.command:
        parser.print_help()
        return 0

    try:
        result = args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except StoreError as e:
        print(f"Database error: {e}", file=sys.stderr)
        return 2
    return result if result else 0


if __name__ == "__main__":
    sys.exit(main())
