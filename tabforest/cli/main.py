"""CLI: tabforest status, show, check, replay, snapshot, init, presets, config validate."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import CONFIG_FILENAMES, load_config, validate_config
from ..core.events import event_from_dict
from ..engine import TabTreeEngine
from ..presets import get_preset, list_presets


def _get_engine(config_path: str | None = None) -> TabTreeEngine:
    try:
        config = load_config(config_path)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)
    return TabTreeEngine(config=config)


def _storage_location(engine: TabTreeEngine) -> str:
    storage = engine.config.storage
    if storage.backend == "sqlite":
        return storage.sqlite_path
    if storage.backend == "memory":
        return "in-memory"
    return storage.root


def cmd_status(args):
    """Show windows, views and node counts of the persisted forest."""
    engine = _get_engine(args.config)
    try:
        state = engine.tree.state
        print(f"Storage:  {engine.config.storage.backend} ({_storage_location(engine)})")
        if not state.nodes:
            print("No saved tree yet.")
            return

        groups = sum(1 for n in state.nodes.values() if n.group_info is not None)
        saved_at = engine.persistence.last_saved_at()
        if saved_at is not None:
            print(f"Saved:    {saved_at.strftime('%Y-%m-%d %H:%M:%S %Z')}")
        print(f"Windows:  {len(state.windows)}")
        print(f"Views:    {len(state.views)}")
        print(f"Nodes:    {len(state.nodes)} ({groups} groups)")
        print(f"Unread:   {len(state.unread_tab_ids)}")
        print()

        print(f"{'Window':>8}  {'View':<20} {'Name':<16} {'Roots':>6} {'Nodes':>6}")
        print("-" * 62)
        for window in state.windows.values():
            for view_id in window.view_ids:
                view = state.views[view_id]
                count = sum(1 for n in state.nodes.values() if n.view_id == view_id)
                active = "*" if view_id == window.active_view_id else " "
                print(
                    f"{window.window_id:>8}  {view_id:<20} {active}{view.name:<15} "
                    f"{len(view.root_nodes):>6} {count:>6}"
                )
    finally:
        engine.close()


def cmd_show(args):
    """Print the tree of one view, or of every view."""
    engine = _get_engine(args.config)
    try:
        state = engine.tree.state
        if args.view:
            if args.view not in state.views:
                print(f"Unknown view: {args.view}", file=sys.stderr)
                sys.exit(1)
            view_ids = [args.view]
        else:
            view_ids = list(state.views)

        if not view_ids:
            print("No saved tree yet.")
            return
        for view_id in view_ids:
            view = state.views[view_id]
            print(f"== {view.name} ({view_id}, window {view.window_id}) ==")
            rendered = engine.render(view_id, show_hidden=args.all)
            print(rendered if rendered else "(empty)")
            print()
    finally:
        engine.close()


def cmd_check(args):
    """Verify the structural invariants of the persisted forest."""
    engine = _get_engine(args.config)
    try:
        errors = engine.check_invariants()
    finally:
        engine.close()
    if errors:
        print("Tree invariant violations:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    print("Tree is consistent.")


def cmd_replay(args):
    """Apply JSON-lines tab events to the persisted forest."""
    path = Path(args.file)
    if not path.is_file():
        print(f"Event file not found: {path}", file=sys.stderr)
        sys.exit(1)

    events = []
    for lineno, line in enumerate(path.read_text().splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            events.append(event_from_dict(json.loads(line)))
        except (json.JSONDecodeError, ValueError) as e:
            print(f"{path}:{lineno}: {e}", file=sys.stderr)
            sys.exit(1)

    engine = _get_engine(args.config)
    try:
        if args.reset:
            engine.reset()
        engine.dispatch_many(events)
        errors = engine.check_invariants()
        saved = engine.flush()
        nodes = len(engine.tree.state.nodes)
        dropped = engine.dropped_events
    finally:
        engine.close()

    print(f"Applied {len(events)} events ({dropped} dropped); {nodes} nodes in tree.")
    if not saved:
        print("Failed to save tree state.", file=sys.stderr)
        sys.exit(1)
    if errors:
        print("Tree invariant violations:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        sys.exit(1)


def cmd_snapshot_create(args):
    """Store a named copy of the persisted forest."""
    engine = _get_engine(args.config)
    try:
        snapshot = engine.create_snapshot(args.name)
    finally:
        engine.close()
    print(f"Created snapshot {snapshot.id} ({snapshot.name})")


def cmd_snapshot_list(args):
    """List named and automatic snapshots, oldest first."""
    engine = _get_engine(args.config)
    try:
        snapshots = engine.list_snapshots()
    finally:
        engine.close()
    if not snapshots:
        print("No snapshots.")
        return
    print(f"{'ID':<36} {'Created':<20} {'Kind':<6} {'Name'}")
    print("-" * 80)
    for s in snapshots:
        kind = "auto" if s.is_auto_save else "named"
        created = s.created_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{s.id:<36} {created:<20} {kind:<6} {s.name}")


def cmd_snapshot_export(args):
    """Write one snapshot as JSON to stdout or a file."""
    engine = _get_engine(args.config)
    try:
        text = engine.export_snapshot(args.snapshot_id)
    except KeyError:
        print(f"Unknown snapshot: {args.snapshot_id}", file=sys.stderr)
        sys.exit(1)
    finally:
        engine.close()
    if args.output:
        Path(args.output).write_text(text)
        print(f"Exported {args.snapshot_id} to {args.output}")
    else:
        print(text)


def cmd_snapshot_delete(args):
    """Delete one snapshot."""
    engine = _get_engine(args.config)
    try:
        deleted = engine.delete_snapshot(args.snapshot_id)
    finally:
        engine.close()
    if not deleted:
        print(f"Unknown snapshot: {args.snapshot_id}", file=sys.stderr)
        sys.exit(1)
    print(f"Deleted {args.snapshot_id}")


def cmd_init(args):
    """Generate a config file from a preset."""
    preset = get_preset(args.preset)
    if preset is None:
        available = ", ".join(p.name for p in list_presets())
        print(f"Unknown preset: {args.preset}", file=sys.stderr)
        if available:
            print(f"Available presets: {available}", file=sys.stderr)
        sys.exit(1)

    output = Path.cwd() / CONFIG_FILENAMES[0]
    if output.exists() and not args.force:
        print(f"Config file already exists: {output}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    output.write_text(preset.template)
    print(f"Created {output}")
    print(f"Preset: {preset.name} ({preset.description})")


def cmd_presets(args):
    """List presets."""
    print(f"{'Name':<15} {'Description'}")
    print("-" * 60)
    for p in list_presets():
        print(f"{p.name:<15} {p.description}")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Link-opened tabs:   {config.placement.link_opened.value}")
        print(f"  Manual-opened tabs: {config.placement.manual_opened.value}")
        print(f"  Closed parents:     {config.detach.child_behavior.value}")
        print(f"  Storage: {config.storage.backend}")


def main():
    parser = argparse.ArgumentParser(
        prog="tabforest",
        description="Persistent tree-of-tabs synchronization engine",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # status
    subparsers.add_parser("status", help="Show windows, views and node counts")

    # show
    show_parser = subparsers.add_parser("show", help="Print the tree")
    show_parser.add_argument("--view", help="Only this view id")
    show_parser.add_argument("--all", action="store_true", help="Include nodes hidden by collapsed parents")

    # check
    subparsers.add_parser("check", help="Verify tree invariants")

    # replay
    replay_parser = subparsers.add_parser("replay", help="Apply JSON-lines tab events")
    replay_parser.add_argument("file", help="Event file, one JSON object per line")
    replay_parser.add_argument("--reset", action="store_true", help="Start from an empty tree")

    # snapshot create|list|export|delete
    snapshot_parser = subparsers.add_parser("snapshot", help="Named snapshot operations")
    snapshot_sub = snapshot_parser.add_subparsers(dest="snapshot_command")
    create_parser = snapshot_sub.add_parser("create", help="Store a copy of the tree")
    create_parser.add_argument("--name", help="Snapshot name (default: timestamp)")
    snapshot_sub.add_parser("list", help="List snapshots")
    export_parser = snapshot_sub.add_parser("export", help="Print a snapshot as JSON")
    export_parser.add_argument("snapshot_id")
    export_parser.add_argument("--output", "-o", help="Write to this file instead of stdout")
    delete_parser = snapshot_sub.add_parser("delete", help="Delete a snapshot")
    delete_parser.add_argument("snapshot_id")

    # init
    init_parser = subparsers.add_parser("init", help="Generate config from a preset")
    init_parser.add_argument("preset", nargs="?", default="default", help="Preset name (default: default)")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing config")

    # presets
    subparsers.add_parser("presets", help="List config presets")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "status":
        cmd_status(args)
    elif args.command == "show":
        cmd_show(args)
    elif args.command == "check":
        cmd_check(args)
    elif args.command == "replay":
        cmd_replay(args)
    elif args.command == "snapshot":
        handlers = {
            "create": cmd_snapshot_create,
            "list": cmd_snapshot_list,
            "export": cmd_snapshot_export,
            "delete": cmd_snapshot_delete,
        }
        handler = handlers.get(args.snapshot_command)
        if handler is None:
            print("Usage: tabforest snapshot {create,list,export,delete}")
            sys.exit(1)
        handler(args)
    elif args.command == "init":
        cmd_init(args)
    elif args.command == "presets":
        cmd_presets(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: tabforest config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
