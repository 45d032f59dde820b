import os
import sys
import argparse

from disk_search.config import CONFIG, ensure_directories, load_config, validate_config
from disk_search.engine import DiskSearchEngine
from disk_search.indexer.pipeline import run_cycle
from disk_search.indexer.query import match_index, parse_query
from disk_search.indexer.store import IndexStore
from disk_search.utils.file_utils import format_file_size
from disk_search.utils.logger import logger, setup_logging

HELP_TEXT = """Commands:
  :set <dir>          switch the root directory and re-index it
  :update             re-index the current root now
  :interval <secs>    change the full-volume sweep interval
  :roots              list roots that have a saved index
  :status             show indexing status of the current root
  :quit               exit
Anything else is searched; end a term with ? for prefix matching."""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="disk-search",
        description="Index files under a directory and search their contents.",
    )
    parser.add_argument("root", nargs="?", help="directory to index once (one-shot mode)")
    parser.add_argument("terms", nargs="*", help="terms to search after indexing")
    parser.add_argument("--config", help="path to the JSON configuration file")
    parser.add_argument("--log-level", help="override the configured log level")
    return parser


def print_results(results, out=None):
    out = out or sys.stdout
    for descriptor in results:
        out.write(f"{descriptor.path}  ({format_file_size(descriptor.size)})\n")
    out.write(f"{len(results)} match(es)\n")


def run_once(root, terms, out=None):
    """Index ``root`` and search each term against the fresh generation."""
    out = out or sys.stdout
    store = IndexStore(CONFIG["index_dir"])
    index = run_cycle(store, root, CONFIG, trigger="cli")
    if index is None:
        out.write(f"Indexing {root} failed, see the log for details\n")
        return 1
    out.write(f"Indexed {len(index.files)} files under {index.root}\n")
    for term in terms:
        normalized, mode = parse_query(term)
        out.write(f"-- {term}\n")
        print_results(match_index(index, normalized, mode), out)
    return 0


def handle_command(engine, line, out=None):
    """Process one interactive line. Returns False when the user quits."""
    out = out or sys.stdout
    line = line.strip()
    if not line:
        return True
    if line in (":quit", ":q", ":exit"):
        return False
    if line == ":help":
        out.write(HELP_TEXT + "\n")
    elif line.startswith(":set "):
        root = line[5:].strip()
        if not os.path.isdir(root):
            out.write(f"Not a directory: {root}\n")
        else:
            engine.set_root(root)
            out.write(f"Root switched to {os.path.abspath(root)}, indexing in background\n")
    elif line == ":update":
        if engine.query.root:
            engine.set_root(engine.query.root)
            out.write("Index update queued\n")
        else:
            out.write("No root selected, use :set <dir>\n")
    elif line.startswith(":interval "):
        try:
            seconds = engine.set_interval(float(line[10:].strip()))
            out.write(f"Sweep interval is now {seconds:.0f} seconds\n")
        except ValueError:
            out.write("Interval must be a number of seconds\n")
    elif line == ":roots":
        for root in engine.store.roots():
            out.write(root + "\n")
    elif line == ":status":
        state = engine.status().value
        loaded = "loaded" if engine.has_index() else "no index yet"
        out.write(f"{engine.query.root}: {state}, {loaded}\n")
    else:
        if not engine.has_index():
            out.write("No index yet for this root, results may be empty\n")
        print_results(engine.search(line), out)
    return True


def interactive(engine, stdin=None, out=None):
    stdin = stdin or sys.stdin
    out = out or sys.stdout
    out.write(HELP_TEXT + "\n")
    engine.start_background_workers()
    try:
        for line in stdin:
            if not handle_command(engine, line, out):
                break
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
    return 0


def main(argv=None):
    """Main entry point for Disk Search"""
    args = build_parser().parse_args(argv)
    try:
        load_config(args.config)
        ensure_directories()
        setup_logging(CONFIG["log_dir"], args.log_level or CONFIG.get("log_level", "INFO"))
        validate_config()

        if args.root:
            return run_once(args.root, args.terms)

        logger.info("Starting Disk Search...")
        engine = DiskSearchEngine(persist_interval=True)
        return interactive(engine)
    except Exception as e:
        logger.error(f"Critical error starting application: {e}")
        raise


if __name__ == "__main__":
    sys.exit(main())
