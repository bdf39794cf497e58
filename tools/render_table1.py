#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from table1_blueprint.builder import build_blueprint
from table1_blueprint.render import OutputFormat, render
from table1_blueprint.spec import load_table_spec
from table1_blueprint.themes import list_themes, load_theme_bundle

logger = logging.getLogger("render_table1")

_SUFFIX = {OutputFormat.CONSOLE: ".txt", OutputFormat.HTML: ".html", OutputFormat.LATEX: ".tex"}


def _formats(value: str) -> List[OutputFormat]:
    if value == "all":
        return list(OutputFormat)
    return [OutputFormat.coerce(v) for v in value.split(",") if v]


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Render a Table 1 summary from a CSV dataset and a YAML table spec.")
    ap.add_argument("--data", type=str, required=True, help="CSV dataset.")
    ap.add_argument("--spec", type=str, required=True, help="YAML table spec (group, variables, strata, options).")
    ap.add_argument("--format", type=str, default="console", help="console, html, latex, a comma list, or 'all'.")
    ap.add_argument("--theme", type=str, default=None, help=f"Theme name. Built-in: {', '.join(list_themes())}.")
    ap.add_argument("--theme-bundle", type=str, default=None, help="YAML file with extra theme definitions.")
    ap.add_argument("--out-dir", type=str, default=None, help="Write files here instead of printing.")
    ap.add_argument("--name", type=str, default="table1", help="Base file name for outputs.")
    ap.add_argument("--log-level", type=str, default="WARNING", help="Logging level.")
    args = ap.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.WARNING), format="%(levelname)s %(name)s: %(message)s")

    data_path = Path(args.data)
    if not data_path.exists():
        raise SystemExit(f"Missing dataset: {data_path}")
    spec = load_table_spec(args.spec)
    if args.theme_bundle:
        loaded = load_theme_bundle(args.theme_bundle)
        logger.info("loaded %d themes from %s", len(loaded), args.theme_bundle)

    df = pd.read_csv(data_path)
    bp = build_blueprint(spec, df)
    logger.info("blueprint %dx%d", *bp.shape)

    out_dir = Path(args.out_dir) if args.out_dir else None
    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)

    for fmt in _formats(args.format):
        table = render(bp, theme=args.theme, fmt=fmt)
        if out_dir is None:
            print(table.text)
            if table.packages:
                print(f"% packages: {', '.join(table.packages)}")
            continue
        path = out_dir / f"{args.name}{_SUFFIX[fmt]}"
        path.write_text(table.text + "\n", encoding="utf-8")
        print(f"Wrote: {path}")
        if table.packages:
            print(f"LaTeX packages: {', '.join(table.packages)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
