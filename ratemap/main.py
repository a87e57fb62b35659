"""
Command-line driver: build a per-100k county choropleth table from the NYT
county counts, ACS population and Census boundaries, and save it to disk.

Outputs the map table (GeoPackage), the rate table and a one-row metadata
CSV per preset.
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .config import PRESETS
from .data_manager import load_payload


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Compute per-100k county rates from cumulative counts and prepare "
            "a classified, reprojected map table."
        )
    )
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default="cases-7day",
        help="Which rate to map (default: cases-7day).",
    )
    parser.add_argument(
        "--window",
        type=int,
        default=None,
        help="Rolling window size in observations (rolling presets only).",
    )
    parser.add_argument(
        "--keep-missing",
        action="store_true",
        help="Keep counties without a rate as an explicit 'No data' category.",
    )
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Download inputs again instead of using the cache.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Where to write outputs (default: <repo>/data).",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = PRESETS[args.preset]
    overrides = {}
    if args.window is not None:
        overrides["window"] = args.window
    if args.keep_missing:
        overrides["missing"] = "keep"
    if overrides:
        config = dataclasses.replace(config, **overrides)

    payload = load_payload(config, force_refresh=args.force_refresh)
    map_table = payload["map"]
    rates = payload["rates"]
    bbox = payload["bbox"]

    data_dir = args.output_dir or Path(__file__).resolve().parent.parent / "data"
    data_dir.mkdir(parents=True, exist_ok=True)

    map_path = data_dir / f"{args.preset}_map.gpkg"
    rates_path = data_dir / f"{args.preset}_rates.csv"
    meta_path = data_dir / f"{args.preset}_meta.csv"

    rates.to_csv(rates_path, index=False)
    if map_table.empty:
        print("\nNo counties to map; skipping GeoPackage output.")
    else:
        # GPKG has no categorical or nullable-int field types
        export = map_table.assign(
            category=map_table["category"].astype("float64"),
            category_label=map_table["category_label"].astype(str),
        )
        export.to_file(map_path, driver="GPKG")

    meta_df = pd.DataFrame(
        [
            {
                "preset": args.preset,
                "value_col": config.value_col,
                "mode": config.mode,
                "window": config.window,
                "latest_date": payload["latest_date"],
                "rated_entities": len(rates),
                "map_features": len(map_table),
                "bbox": "" if bbox is None else ", ".join(f"{v:.1f}" for v in bbox),
            }
        ]
    )
    meta_df.to_csv(meta_path, index=False)

    print("\n--- RATE MAP COMPLETE ---")
    print(
        f"Preset: {args.preset} | Latest date: {payload['latest_date']} | "
        f"Rated: {len(rates)} | Mapped: {len(map_table)}"
    )
    print(f"\nSaved outputs to {data_dir}/:")
    for path in (map_path, rates_path, meta_path):
        if path.exists():
            print(f"  - {path.name}")
    if not map_table.empty:
        print("\nCategory counts:")
        print(map_table["category_label"].value_counts(sort=False))


if __name__ == "__main__":
    main()
