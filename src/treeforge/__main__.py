import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from treeforge.config import load_cli_param
from treeforge.exceptions import TreeforgeError
from treeforge.frontend import load_model
from treeforge.printer import dump_ensemble

logger = logging.getLogger("treeforge")

parser = argparse.ArgumentParser(
    prog="treeforge", description="Treeforge: load a tree ensemble and print it"
)
parser.add_argument("config", type=Path, help="Config file with `key = value` lines")
parser.add_argument(
    "overrides",
    nargs="*",
    metavar="key=value",
    help="Parameters overriding the config file, e.g. model_in=model.onnx",
)
parser.add_argument(
    "--log-level",
    dest="log_level",
    choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    default="INFO",
    help="Logging level (default: INFO)",
)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    )
    try:
        param = load_cli_param(args.config, args.overrides)
        ensemble = load_model(param.format, param.model_in)
    except TreeforgeError as e:
        logger.error("%s", e)
        return 1

    logger.info("model size = %d", ensemble.n_trees)
    logger.info("%s", dump_ensemble(ensemble))
    return 0


if __name__ == "__main__":
    sys.exit(main())
