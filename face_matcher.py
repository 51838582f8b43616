"""Command-line entry: enroll descriptors into a gallery file and match queries against it.

Descriptors come from an external model. Pass them as a JSON array file or as
an inline comma-separated list, e.g. `--descriptor -0.12,0.4,0.33`. A leading
negative component is fine: the value is bound to the flag before parsing.
"""

from __future__ import annotations

import argparse
import json
import sys

from pathlib import Path
from typing import List, Optional

from src.config import SIMILARITY_THRESHOLD, TOPK_DEBUG
from src.face.gallery import Gallery
from src.face.matcher import CosineMatcher, MatcherConfig
from src.utils.log import get_logger
from src.utils.math import l2_normalize

logger = get_logger(__name__)

DESCRIPTOR_FLAGS = ("--descriptor", "-d")


def parse_descriptor(value: str) -> List[float]:
    """Read a descriptor from a JSON file path or a comma-separated list."""
    path = Path(value)
    if path.suffix.lower() == ".json" or path.is_file():
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a JSON array of numbers")
        return [float(x) for x in data]
    return [float(x) for x in value.split(",") if x.strip()]


def _load_gallery(path: str) -> Gallery:
    gallery = Gallery()
    if not gallery.load(Path(path)):
        logger.info(f"No gallery at {path}, starting empty")
    return gallery


def cmd_enroll(args: argparse.Namespace) -> int:
    gallery = _load_gallery(args.gallery)
    gallery.enroll(args.identity, parse_descriptor(args.descriptor))
    gallery.save(Path(args.gallery))
    return 0


def cmd_match(args: argparse.Namespace) -> int:
    gallery = _load_gallery(args.gallery)
    matcher = CosineMatcher(MatcherConfig(threshold=args.threshold, backend=args.backend))

    query = l2_normalize(parse_descriptor(args.descriptor))
    enrollment = gallery.snapshot()
    result = matcher.match(query, enrollment)

    out = {
        "matched": result.matched,
        "identity": result.identity,
        "score": result.score,
        "threshold": matcher.config.threshold,
    }
    if args.topk > 0:
        out["candidates"] = [{"identity": n, "score": s} for n, s in matcher.rank(query, enrollment, args.topk)]
    print(json.dumps(out, ensure_ascii=False))

    if result:
        logger.info(f"Match: {result.identity} ({result.score * 100:.1f}%)")
    else:
        logger.info("No match found above threshold")
    return 0 if result else 1


def cmd_list(args: argparse.Namespace) -> int:
    gallery = _load_gallery(args.gallery)
    for name in gallery.identities():
        vec = gallery.get(name)
        print(f"{name}\t{vec.shape[0]}\t{gallery.created_at(name) or ''}")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    gallery = _load_gallery(args.gallery)
    if not gallery.remove(args.identity):
        logger.warning(f"{args.identity} is not enrolled")
        return 1
    gallery.save(Path(args.gallery))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face descriptor enrollment and identity matching")
    parser.add_argument("--gallery", "-g", default="data/gallery_embeddings.json", help="Gallery JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("enroll", help="Normalize a descriptor and store it for an identity")
    p.add_argument("--identity", "-i", required=True, help="Identity (e.g. student id)")
    p.add_argument("--descriptor", "-d", required=True, help="JSON array file or comma-separated floats")
    p.set_defaults(func=cmd_enroll)

    p = sub.add_parser("match", help="Find the best enrolled identity for a query descriptor")
    p.add_argument("--descriptor", "-d", required=True, help="JSON array file or comma-separated floats")
    p.add_argument(
        "--threshold",
        "-t",
        type=float,
        default=SIMILARITY_THRESHOLD,
        help=f"Minimum cosine similarity to accept (default {SIMILARITY_THRESHOLD})",
    )
    p.add_argument("--topk", type=int, default=TOPK_DEBUG, help="Also print the top-k candidates (0 to disable)")
    p.add_argument("--backend", default="auto", choices=["auto", "numpy", "torch"], help="Similarity backend")
    p.set_defaults(func=cmd_match)

    p = sub.add_parser("list", help="List enrolled identities")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("remove", help="Remove an enrolled identity")
    p.add_argument("--identity", "-i", required=True)
    p.set_defaults(func=cmd_remove)

    return parser


def bind_descriptor_values(argv: List[str]) -> List[str]:
    """Attach the value to `--descriptor` so argparse does not read `-0.5,0.8` as an option."""
    out: List[str] = []
    it = iter(argv)
    for arg in it:
        if arg in DESCRIPTOR_FLAGS:
            value = next(it, None)
            if value is None:
                out.append(arg)
                break
            out.append(f"--descriptor={value}")
        else:
            out.append(arg)
    return out


def main(argv: Optional[List[str]] = None) -> int:
    argv = bind_descriptor_values(sys.argv[1:] if argv is None else list(argv))
    args = build_parser().parse_args(argv)
    try:
        return int(args.func(args))
    except (OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
