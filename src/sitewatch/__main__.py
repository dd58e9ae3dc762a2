import argparse
import json
from pathlib import Path

from src.config.logger_config import logger
from src.sitewatch.check import run_check


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python -m src.sitewatch", description="Run one sitewatch check.")
    parser.add_argument("options", type=Path, help="JSON file holding the agent options")
    parser.add_argument("--agent", default="sitewatch", help="agent name the events are stored under")
    parser.add_argument("--db", type=Path, default=None, help="SQLite event database")
    parser.add_argument("--progress", action="store_true", help="show a progress bar")
    args = parser.parse_args(argv)

    options = json.loads(args.options.read_text(encoding="utf-8"))
    summary = run_check(options, agent_name=args.agent, db_path=args.db, show_progress=args.progress)
    logger.info("Check finished for {}", args.agent)
    print(summary)
    return 1 if summary.documents_failed else 0


# python -m src.sitewatch agent.json --agent xkcd
if __name__ == "__main__":
    raise SystemExit(main())
