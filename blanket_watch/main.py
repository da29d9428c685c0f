#!/usr/bin/env python3
"""
Main module for the Blanket Watch application.
Recommends tonight's blanket combo for the horse from the overnight forecast.
"""

import argparse
import sys
import time
from datetime import datetime

from blanket_watch.config import ConfigError, ERROR_MESSAGES, load_barn_config
from blanket_watch.helpers import metrics_lines
from blanket_watch.models import Condition
from blanket_watch.offline_cache import CacheInstallError, CacheStorage, OfflineCacheWorker, Request
from blanket_watch.refresh import WeatherRefresher
from blanket_watch.report import save_excel_report
from blanket_watch.rules import describe_recommendation
from blanket_watch.store import BlanketStore, StoreError, parse_import_text
from blanket_watch.weather import tonight_window


def _when(iso: str) -> str:
    try:
        return datetime.fromisoformat(iso).astimezone().strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso


def print_tonight(refresher: WeatherRefresher, refreshed: bool):
    """Print the window, weather status, metrics and the recommendation."""
    label = refresher.window_label or tonight_window(tz=refresher.config.get("timezone"))[2]
    print(f"\nTonight window: {label} (local time)")

    if refresher.error:
        print(f"Weather error: {refresher.error}")
    if refreshed:
        tz = f" (tz: {refresher.timezone})" if refresher.timezone else ""
        print(f"Updated {_when(refresher.fetched_at_iso)}{tz}.")
    elif refresher.fetched_at_iso:
        print(f"Last known weather: {_when(refresher.fetched_at_iso)}.")

    print()
    for line in metrics_lines(refresher.metrics):
        print(line)
    print("\n=== Recommendation ===")
    for line in describe_recommendation(refresher.store.data, refresher.metrics):
        print(line)


# ---- Weather ----
def cmd_tonight(args, config, store) -> int:
    refresher = WeatherRefresher(store, config)
    refreshed = refresher.refresh(quiet_if_fresh=args.quiet_if_fresh)
    print_tonight(refresher, refreshed)

    if args.excel and refresher.metrics is not None:
        path = save_excel_report(
            store.data, refresher.metrics, refresher.window_df,
            refresher.window_label, refresher.timezone, args.reports_dir,
        )
        print(f"\nExcel saved:\n{path}")
    return 1 if refresher.error else 0


def cmd_watch(args, config, store) -> int:
    refresher = WeatherRefresher(store, config)
    refresher.on_update = lambda r: print_tonight(r, not r.error)

    if not refresher.refresh(quiet_if_fresh=True) and not refresher.error:
        print_tonight(refresher, False)
    refresher.start_auto_refresh()
    print(f"\nRefreshing every {config['refresh_minutes']} minutes. Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        refresher.stop_auto_refresh()
    return 0


# ---- Blankets ----
def cmd_blankets(args, config, store) -> int:
    if args.action == "add":
        b = store.add_blanket(args.name, args.notes or "")
        print(f"Added blanket {b.name} ({b.id})")
    elif args.action == "edit":
        b = store.edit_blanket(args.id, name=args.name, notes=args.notes)
        print(f"Saved blanket {b.name} ({b.id})")
    elif args.action == "delete":
        b = store.delete_blanket(args.id)
        print(f"Deleted blanket {b.name}")
    else:
        if not store.data.blankets:
            print("No blankets yet.")
        for b in store.data.blankets:
            notes = f"  {b.notes.strip()}" if b.notes.strip() else ""
            print(f"{b.id}  {b.name or '(untitled)'}{notes}")
    return 0


# ---- Combos ----
def cmd_combos(args, config, store) -> int:
    if args.action == "add":
        c = store.add_combo(args.name, args.blanket or [])
        print(f"Added combo {c.name} ({c.id})")
    elif args.action == "edit":
        blanket_ids = [] if args.clear_blankets else args.blanket
        c = store.edit_combo(args.id, name=args.name, blanket_ids=blanket_ids)
        print(f"Saved combo {c.name} ({c.id})")
    elif args.action == "delete":
        c = store.delete_combo(args.id)
        print(f"Deleted combo {c.name}")
    else:
        if not store.data.combos:
            print("No combos yet.")
        for c in store.data.combos:
            default = "  [default]" if c.id == store.data.default_combo_id else ""
            print(f"{c.id}  {c.name or '(untitled)'}{default}")
            if not c.blanket_ids:
                print("    No blankets selected.")
            for bid in c.blanket_ids:
                print(f"    - {store.data.blanket_name(bid)}")
    return 0


def cmd_default(args, config, store) -> int:
    store.set_default_combo("" if args.action == "clear" else args.id)
    print("Default combo cleared." if args.action == "clear" else f"Default combo set to {args.id}.")
    return 0


# ---- Rules ----
def _conditions(texts):
    if texts is None:
        return None
    try:
        return [Condition.parse(t) for t in texts]
    except ValueError as e:
        raise StoreError(str(e)) from e


def cmd_rules(args, config, store) -> int:
    if args.action == "add":
        r = store.add_rule(args.combo, _conditions(args.when) or [], args.name or "")
        print(f"Added rule {r.name or r.id}")
    elif args.action == "edit":
        conditions = [] if args.clear_conditions else _conditions(args.when)
        r = store.edit_rule(args.id, combo_id=args.combo, conditions=conditions, name=args.name)
        print(f"Saved rule {r.name or r.id}")
    elif args.action == "delete":
        store.delete_rule(args.id)
        print("Deleted rule.")
    elif args.action == "move":
        index = next((i for i, r in enumerate(store.data.rules) if r.id == args.id), None)
        if index is None:
            raise StoreError(f"No rule with id {args.id!r}.")
        if not store.move_rule(index, -1 if args.direction == "up" else 1):
            print("Rule is already at that end of the list.")
    else:
        if not store.data.rules:
            print("No rules yet.")
        for idx, r in enumerate(store.data.rules, 1):
            combo = store.data.combo(r.combo_id)
            conditions = " AND ".join(c.to_text() for c in r.conditions) or "(no conditions) (always matches)"
            title = (r.name or "").strip() or f"Rule {idx}"
            print(f"{idx}. {title}  [{r.id}]")
            print(f"    {conditions}")
            print(f"    → {combo.name if combo else '(missing combo)'}")
    return 0


# ---- Backup ----
def cmd_export(args, config, store) -> int:
    text = store.export_data()
    if args.file:
        with open(args.file, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Exported at {datetime.now():%Y-%m-%d %H:%M}.")
    else:
        print(text)
    return 0


def cmd_import(args, config, store) -> int:
    try:
        with open(args.file, "r", encoding="utf-8") as f:
            data = parse_import_text(f.read())
    except (OSError, StoreError) as e:
        print(f"Import failed: {e}")
        return 1

    if not args.yes:
        answer = input("Import JSON and replace your current data? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Import cancelled.")
            return 0
    store.import_data(data)
    print(f"Imported at {datetime.now():%Y-%m-%d %H:%M}.")
    return 0


# ---- Offline cache ----
def cmd_cache(args, config, store) -> int:
    cache_cfg = config["cache"]
    worker = OfflineCacheWorker(
        CacheStorage(cache_cfg["dir"]),
        args.origin or cache_cfg["origin"],
        version=cache_cfg["version"],
        prefix=cache_cfg["prefix"],
    )
    try:
        if args.action in ("install", "activate"):
            worker.install()
            print(f"Installed {worker.cache_name}.")
            if args.action == "activate":
                removed = worker.activate()
                print(f"Activated {worker.cache_name}; removed {len(removed)} stale cache(s).")
            return 0

        worker.resume()
        request = Request(url=args.url, mode="navigate" if args.navigate else "cors")
        res = worker.handle(request)
        if res is None:
            print("Not handled by the offline cache (non-GET or cross-origin).")
            return 0
        worker.wait_until_idle()
        print(f"{res.status} {len(res.body)} bytes")
        return 0 if res.ok else 1
    except CacheInstallError as e:
        print(f"Cache install failed: {e}")
        return 1
    finally:
        worker.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blanket-watch", description=__doc__.strip().splitlines()[-1])
    parser.add_argument("--config", help="Path to Barn.json (default: ./Barn.json if present)")
    parser.add_argument("--data", help="Override the data file path")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("tonight", help="Fetch tonight's weather and recommend a combo")
    p.add_argument("--quiet-if-fresh", action="store_true", help="Reuse a snapshot that is still fresh")
    p.add_argument("--excel", action="store_true", help="Also save an Excel report")
    p.add_argument("--reports-dir", help="Folder for Excel reports (default: ./reports)")
    p.set_defaults(func=cmd_tonight)

    p = sub.add_parser("watch", help="Keep refreshing the recommendation")
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("blankets", help="Manage blankets")
    bsub = p.add_subparsers(dest="action")
    bsub.add_parser("list")
    a = bsub.add_parser("add")
    a.add_argument("name")
    a.add_argument("--notes")
    a = bsub.add_parser("edit")
    a.add_argument("id")
    a.add_argument("--name")
    a.add_argument("--notes")
    a = bsub.add_parser("delete")
    a.add_argument("id")
    p.set_defaults(func=cmd_blankets, action="list")

    p = sub.add_parser("combos", help="Manage blanket combos")
    csub = p.add_subparsers(dest="action")
    csub.add_parser("list")
    a = csub.add_parser("add")
    a.add_argument("name")
    a.add_argument("--blanket", action="append", help="Blanket id (repeatable)")
    a = csub.add_parser("edit")
    a.add_argument("id")
    a.add_argument("--name")
    a.add_argument("--blanket", action="append", help="Replace blankets with these ids")
    a.add_argument("--clear-blankets", action="store_true")
    a = csub.add_parser("delete")
    a.add_argument("id")
    p.set_defaults(func=cmd_combos, action="list")

    p = sub.add_parser("default", help="Set or clear the default combo")
    dsub = p.add_subparsers(dest="action", required=True)
    a = dsub.add_parser("set")
    a.add_argument("id")
    dsub.add_parser("clear")
    p.set_defaults(func=cmd_default)

    p = sub.add_parser("rules", help="Manage rules (first match wins)")
    rsub = p.add_subparsers(dest="action")
    rsub.add_parser("list")
    a = rsub.add_parser("add")
    a.add_argument("--combo", required=True)
    a.add_argument("--name")
    a.add_argument("--when", action="append", help='Condition such as "minFeelsF <= 40" (repeatable)')
    a = rsub.add_parser("edit")
    a.add_argument("id")
    a.add_argument("--combo")
    a.add_argument("--name")
    a.add_argument("--when", action="append", help="Replace conditions with these")
    a.add_argument("--clear-conditions", action="store_true")
    a = rsub.add_parser("delete")
    a.add_argument("id")
    a = rsub.add_parser("move")
    a.add_argument("id")
    a.add_argument("direction", choices=["up", "down"])
    p.set_defaults(func=cmd_rules, action="list")

    p = sub.add_parser("export", help="Print or save a JSON backup")
    p.add_argument("file", nargs="?")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Replace all data from a JSON backup")
    p.add_argument("file")
    p.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("cache", help="Offline cache for the app shell")
    ksub = p.add_subparsers(dest="action", required=True)
    ksub.add_parser("install")
    ksub.add_parser("activate")
    a = ksub.add_parser("get")
    a.add_argument("url")
    a.add_argument("--navigate", action="store_true", help="Treat as a page navigation")
    p.add_argument("--origin", help="Override the configured app origin")
    p.set_defaults(func=cmd_cache)

    return parser


def main(argv=None) -> int:
    """Main entry point for the Blanket Watch application."""
    args = build_parser().parse_args(argv)

    config, error_code = load_barn_config(args.config, required=args.config is not None)
    if error_code != ConfigError.SUCCESS:
        error_msg = ERROR_MESSAGES.get(error_code, f"Unknown error occurred (code: {error_code})")
        print(f"\nConfiguration failed: {error_msg}")
        return error_code
    if args.data:
        config["data_file"] = args.data

    store = BlanketStore(config["data_file"])
    try:
        return args.func(args, config, store)
    except StoreError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
