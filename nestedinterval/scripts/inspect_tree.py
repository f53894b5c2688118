# Command line inspection of nested interval coordinates and tree databases.

import argparse
import logging
import sys

from ..rational import Rational
from ..coordinates import ancestors_of, depth_of, right_endpoint
from ..config import TreeConfig, load_config
from ..storage.database import Node, init_db
from ..storage.tree import NestedIntervalTree


def cmd_coord(args, out):
    c = Rational.parse(args.coordinate)
    out.write(f"left:      {c}\n")
    out.write(f"right:     {right_endpoint(c)}\n")
    out.write(f"depth:     {depth_of(c)}\n")
    out.write(f"ancestors: {' '.join(str(a) for a in ancestors_of(c))}\n")
    return 0


def _open_tree(args):
    config = load_config(args.config) if args.config else TreeConfig(scope=("forest",))
    init_db(args.db, logger=logging.getLogger("inspect"))
    return NestedIntervalTree(Node, config, logging.getLogger("inspect"))


def cmd_dump(args, out):
    tree = _open_tree(args)
    for n in tree.preorder():
        indent = "  " * tree.depth(n)
        out.write(f"{indent}{n.name} [{n.forest}] {n.coordinate} .. {n.right}\n")
    return 0


def cmd_check(args, out):
    tree = _open_tree(args)
    problems = tree.check()
    found = 0
    for kind, ids in problems.items():
        if len(ids) > 0:
            out.write(f"{kind}: {', '.join(str(i) for i in ids)}\n")
            found += len(ids)
    if found == 0:
        out.write("ok\n")
        return 0
    return 1


def main(argv=None, out=sys.stdout):
    parser = argparse.ArgumentParser(
        description="Inspect nested interval coordinates and tree databases"
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("coord", help="Show the interval, depth and ancestors of P/Q")
    p.add_argument("coordinate")
    p.set_defaults(fn=cmd_coord)

    for name, fn, helptext in (
        ("dump", cmd_dump, "Print the tree in preorder"),
        ("check", cmd_check, "Report nodes with inconsistent coordinates"),
    ):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("db", help="Path to the sqlite database")
        p.add_argument("--config", help="YAML file of TreeConfig options")
        p.set_defaults(fn=fn)

    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)
    return args.fn(args, out)


if __name__ == "__main__":
    sys.exit(main())
