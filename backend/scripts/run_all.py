#!/usr/bin/env python3
"""Run the calibration API and the Calibration Agent side by side.

    python backend/scripts/run_all.py              # API + agent
    python backend/scripts/run_all.py --no-agent   # API only
    python backend/scripts/run_all.py --seed-demo  # seed org-demo first

Each component gets its own process; Ctrl+C stops both.
"""

from __future__ import annotations

import argparse
import logging
import multiprocessing
import signal
import sys
import time
from pathlib import Path

_backend_dir = Path(__file__).resolve().parent.parent
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

from velo_calibration.config.settings import (  # noqa: E402
    CALIBRATION_AGENT_PORT,
    SERVER_HOST,
    SERVER_PORT,
)

logger = logging.getLogger("run_all")


def _serve_api():
    import uvicorn
    uvicorn.run("velo_calibration.server:app", host=SERVER_HOST, port=SERVER_PORT, log_level="info")


def _serve_agent(port: int):
    from velo_calibration.agents.calibration_agent import create_calibration_agent

    agent = create_calibration_agent(port=port)
    logger.info("Calibration Agent %s listening on %d", agent.address, port)
    agent.run()


def _stop(children: list[multiprocessing.Process]):
    for child in children:
        if child.is_alive():
            child.terminate()
    for child in children:
        child.join(timeout=5)
        if child.is_alive():
            child.kill()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--no-agent", action="store_true", help="only start the HTTP API")
    parser.add_argument("--seed-demo", action="store_true", help="seed the demo organization before starting")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.seed_demo:
        from velo_calibration.scripts.seed_demo import seed
        seed()

    targets = [("calibration-api", _serve_api, ())]
    if not args.no_agent:
        targets.append(("calibration-agent", _serve_agent, (CALIBRATION_AGENT_PORT,)))

    children = []
    for name, target, target_args in targets:
        child = multiprocessing.Process(target=target, args=target_args, name=name, daemon=True)
        child.start()
        children.append(child)
        logger.info("%s started (pid %d)", name, child.pid)

    def _on_signal(signum, frame):
        logger.info("Stopping %d processes", len(children))
        _stop(children)
        sys.exit(0)

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    while any(child.is_alive() for child in children):
        time.sleep(5)
    for child in children:
        logger.warning("%s exited with code %s", child.name, child.exitcode)
    return 1


if __name__ == "__main__":
    multiprocessing.set_start_method("spawn", force=True)
    sys.exit(main())
