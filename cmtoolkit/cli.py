import json
import logging
import sys
from dataclasses import asdict, is_dataclass

LOG_FORMAT = "[%(levelname)s] %(message)s"


def configure_logging(verbose=False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def add_common_arguments(parser):
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    return parser


def confirm(prompt, stream=None):
    """Ask a y/N question on stdin; anything but y/yes is a no."""
    stream = stream or sys.stdin
    print(f"{prompt} [y/N] ", end="", flush=True)
    answer = stream.readline()
    return answer.strip().lower() in ("y", "yes")


def print_records(records, as_json=False):
    rows = [asdict(r) if is_dataclass(r) else r for r in records]
    if as_json:
        print(json.dumps(rows, indent=2, default=str))
        return
    for row in rows:
        print("  ".join(f"{k}={_cell(v)}" for k, v in row.items()))


def _cell(value):
    if isinstance(value, (list, tuple)):
        return ",".join(str(v) for v in value)
    return value
