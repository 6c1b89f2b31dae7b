import argparse
import sys
import logging
from pathlib import Path
from typing import List, Optional

from alscatalog.config import CatalogConfig
from alscatalog.exceptions import CatalogError
from alscatalog.catalog import TileIndex, LasCatalogSource, plan_from_index, chunks_to_geodataframe, run_catalog
from alscatalog.lidar.generate_model import (
    ProductSpec,
    points_product,
    dtm_product,
    dem_product,
    dsm_product,
    chm_product,
    metric_product
)

PRODUCTS = ("points", "dtm", "dem", "dsm", "chm", "metric")

def setup_logging(level: int = logging.INFO) -> None:
    """
    Configures the standard logging format and level for the command-line interface.

    Args:
        level (int): The logging threshold level.
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

def load_index(inputs: List[str], crs: Optional[str] = None) -> TileIndex:
    """Indexes a catalog given as one directory or a list of LAS/LAZ files."""
    if len(inputs) == 1 and Path(inputs[0]).is_dir():
        return TileIndex.from_directory(inputs[0], crs=crs)
    return TileIndex.from_files(inputs, crs=crs)

def build_config(args: argparse.Namespace) -> CatalogConfig:
    """Loads the optional JSON configuration and applies command-line overrides on top of it."""
    config = CatalogConfig.from_json(args.config) if args.config else CatalogConfig()
    overrides = {
        "chunk_size": args.chunk_size,
        "buffer_margin": args.buffer,
    }
    if hasattr(args, "workers"):
        overrides.update({
            "workers": args.workers,
            "executor": args.executor,
            "ground_algorithm": args.algorithm,
            "output_resolution": args.resolution,
            "require_all": True if args.require_all else None,
            "normalize": False if args.no_normalize else None,
        })
    return config.with_overrides(**overrides).validate()

def build_product(args: argparse.Namespace) -> ProductSpec:
    """Maps the --product flag to a product description."""
    if args.product == "points":
        return points_product()
    if args.product == "dtm":
        return dtm_product()
    if args.product == "dem":
        return dem_product()
    if args.product == "dsm":
        return dsm_product()
    if args.product == "chm":
        return chm_product()
    if not args.metric:
        raise CatalogError("--metric is required with --product metric")
    return metric_product(args.metric)

def show_info(args: argparse.Namespace) -> int:
    """Prints a summary of the tile index and optionally exports the tile footprints."""
    tindex = load_index(args.inputs, crs=args.crs)
    extent = tindex.extent
    print(f"Tiles: {len(tindex)}")
    print(f"Points: {tindex.point_count}")
    print(f"CRS: {tindex.crs}")
    print(f"Extent: {extent.xmin:.2f} {extent.ymin:.2f} {extent.xmax:.2f} {extent.ymax:.2f}")
    print(f"Density: {tindex.density:.2f} pts/unit^2")
    if args.output:
        tindex.to_geodataframe().to_file(args.output)
        logging.info(f"Tile footprints written to {args.output}")
    return 0

def show_plan(args: argparse.Namespace) -> int:
    """Plans the chunk layout and optionally exports it."""
    tindex = load_index(args.inputs, crs=args.crs)
    config = build_config(args)
    chunks = plan_from_index(tindex, config)
    print(f"Chunks: {len(chunks)} (size {config.chunk_size}, buffer {config.buffer_margin})")
    if args.output:
        chunks_to_geodataframe(chunks, crs=tindex.crs, padded=args.padded).to_file(args.output)
        logging.info(f"Chunk layout written to {args.output}")
    return 0

def run(args: argparse.Namespace) -> int:
    """Processes the catalog into the requested product."""
    tindex = load_index(args.inputs, crs=args.crs)
    config = build_config(args)
    product = build_product(args)

    report = run_catalog(LasCatalogSource(tindex), config, product, output=args.output, progress=True)
    print(report.summary())
    if report.product is None:
        logging.error("No product was written")
        return 1
    return 0

def main(argv: Optional[List[str]] = None) -> int:
    """
    Parses command-line arguments and routes execution to the appropriate subroutines.
    """
    parser = argparse.ArgumentParser(
        prog="alscatalog",
        description="Tiled processing of airborne lidar catalogs"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enables debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_catalog_args(sub: argparse.ArgumentParser):
        sub.add_argument("inputs", nargs="+", help="A catalog directory or a list of LAS/LAZ files.")
        sub.add_argument("--crs", type=str, default=None, help="Coordinate reference of the catalog (read from headers by default).")

    def add_tiling_args(sub: argparse.ArgumentParser):
        sub.add_argument("--config", type=str, default=None, help="JSON configuration file.")
        sub.add_argument("--chunk-size", type=float, default=None, help="Chunk core edge length.")
        sub.add_argument("--buffer", type=float, default=None, help="Buffer margin around each chunk.")

    info_parser = subparsers.add_parser("info", help="Summarizes a catalog from its file headers.")
    add_catalog_args(info_parser)
    info_parser.add_argument("--output", type=str, default=None, help="Writes tile footprints (e.g. tiles.gpkg).")

    plan_parser = subparsers.add_parser("plan", help="Plans the chunk layout of a catalog.")
    add_catalog_args(plan_parser)
    add_tiling_args(plan_parser)
    plan_parser.add_argument("--output", type=str, default=None, help="Writes chunk polygons (e.g. chunks.gpkg).")
    plan_parser.add_argument("--padded", action="store_true", help="Exports padded regions instead of cores.")

    run_parser = subparsers.add_parser("run", help="Processes a catalog into a merged product.")
    add_catalog_args(run_parser)
    add_tiling_args(run_parser)
    run_parser.add_argument("--product", choices=PRODUCTS, default="points", help="Product to build. Defaults to points.")
    run_parser.add_argument("--metric", type=str, default=None, help="Reducer of the metric product (e.g. p95, mean, cover).")
    run_parser.add_argument("--resolution", type=float, default=None, help="Output raster resolution.")
    run_parser.add_argument("--algorithm", choices=["triangulation", "knn-idw"], default=None, help="Ground interpolation algorithm.")
    run_parser.add_argument("--workers", type=int, default=None, help="Number of concurrent workers.")
    run_parser.add_argument("--executor", choices=["process", "thread"], default=None, help="Worker pool type.")
    run_parser.add_argument("--require-all", action="store_true", help="Discards the product if any chunk fails.")
    run_parser.add_argument("--no-normalize", action="store_true", help="Skips height normalization.")
    run_parser.add_argument("--output", type=str, required=True, help="Output file (.tif for rasters, .las/.laz for points).")

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    commands = {"info": show_info, "plan": show_plan, "run": run}
    try:
        return commands[args.command](args)
    except (CatalogError, FileNotFoundError, IOError) as e:
        logging.error(f"{type(e).__name__}: {e}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
