"""``python -m linkwatch [--config path.yaml]``"""
from __future__ import annotations

import argparse

from .app import main


def _cli() -> None:
    parser = argparse.ArgumentParser(description="linkwatch resilience control plane")
    parser.add_argument("--config", help="YAML config file (default: $LINKWATCH_CONFIG, else environment only)")
    args = parser.parse_args()
    main(args.config)


if __name__ == "__main__":
    _cli()
