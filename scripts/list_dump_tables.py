#!/usr/bin/env python3
"""Lists the tables of a SQL dump with their column and row counts."""

import argparse
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from blog_migrator.extractors.sql_dump import read_dump  # noqa: E402
from blog_migrator.extractors.sql_tokenizer import extract_columns, list_tables, tokenize  # noqa: E402
from blog_migrator.utils.errors import Diagnostics  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="List the tables with INSERT data in a SQL dump.")
    parser.add_argument("dump", help="path to the .sql dump")
    parser.add_argument("--prefix", default="", help="only show tables starting with this prefix")
    args = parser.parse_args()

    try:
        dump_text = read_dump(args.dump)
    except FileNotFoundError as e:
        print(e)
        return 1

    diagnostics = Diagnostics()
    tables = [t for t in list_tables(dump_text) if t.startswith(args.prefix)]
    if not tables:
        print("No INSERT statements found.")
        return 0

    print(f"{'table':40} {'columns':>8} {'rows':>8}")
    for table in tables:
        rows = tokenize(dump_text, table, diagnostics)
        columns = extract_columns(dump_text, table)
        print(f"{table:40} {len(columns):>8} {len(rows):>8}")

    if diagnostics:
        print()
        for code, info in diagnostics.to_dict().items():
            print(f"{code}: {info['count']}")
            for sample in info["samples"]:
                print(f"  - {sample}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
