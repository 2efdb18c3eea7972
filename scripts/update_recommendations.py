"""Command-line interface for rebuilding the product similarity table.

Loads the behavior log and catalog from CSV exports, recomputes collaborative
and content similarity edges, and saves the table with joblib so
``recommend_cli.py`` (or a serving process) can load it.

Example:
    Rebuild with default settings:
        $ python scripts/update_recommendations.py data/behaviors.csv data/products.csv

    Rebuild into a custom directory with verbose logging:
        $ python scripts/update_recommendations.py data/behaviors.csv data/products.csv \\
            --output-dir models/production --verbose
"""

import argparse
import logging
import sys
from pathlib import Path

from jewelrec.config import RecommenderConfig
from jewelrec.logging_config import setup_logging
from jewelrec.recommender.models import Caller, RecommendationType
from jewelrec.service import build_service_from_csv
from jewelrec.store import save_similarity_table

# The CLI runs with operator privileges
CLI_CALLER = Caller(user_id="cli", roles={"admin"})


def parse_arguments() -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Namespace object containing parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Rebuild the product similarity table from behavior and catalog CSVs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/update_recommendations.py data/behaviors.csv data/products.csv
  python scripts/update_recommendations.py data/behaviors.csv data/products.csv --output-dir models/prod
  python scripts/update_recommendations.py data/behaviors.csv data/products.csv --json-logs
        """,
    )

    parser.add_argument(
        "events_csv",
        type=str,
        help="CSV with columns: user_id, product_id, behavior_type, created_at",
    )
    parser.add_argument(
        "catalog_csv",
        type=str,
        help="CSV with columns: id, category, material, price (plus optional fields)",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default="models",
        help="Directory where the similarity table is saved (default: models)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON logs instead of plain text",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args()


def main() -> int:
    """Main entry point for the recomputation script.

    Returns:
        Exit code: 0 on success, 1 on error.
    """
    try:
        args = parse_arguments()
        setup_logging("DEBUG" if args.verbose else "INFO", json_format=args.json_logs)
        logger = logging.getLogger(__name__)

        config = RecommenderConfig.from_env()
        service = build_service_from_csv(args.events_csv, args.catalog_csv, config=config)

        logger.info("=" * 70)
        logger.info("Recompute Configuration")
        logger.info("=" * 70)
        logger.info(f"Events CSV:       {args.events_csv}")
        logger.info(f"Catalog CSV:      {args.catalog_csv}")
        logger.info(f"Output directory: {args.output_dir}")
        logger.info(f"Window (days):    {config.recompute_window_days}")
        logger.info(f"Collaborative threshold: {config.collaborative_edge_threshold}")
        logger.info(f"Content threshold:       {config.content_edge_threshold}")
        logger.info("=" * 70)

        try:
            summary = service.update_recommendations(CLI_CALLER)
            table_path = save_similarity_table(service.similarity_store, args.output_dir)
        finally:
            service.close()

        logger.info("=" * 70)
        logger.info("Recompute Summary")
        logger.info("=" * 70)
        logger.info(f"Events used:          {summary.num_events}")
        logger.info(f"Interacted products:  {summary.num_interacted_products}")
        logger.info(f"Active products:      {summary.num_active_products}")
        logger.info(f"{RecommendationType.COLLABORATIVE.value} edges: {summary.collaborative_edges}")
        logger.info(f"{RecommendationType.CONTENT.value} edges:       {summary.content_edges}")
        logger.info(f"Duration:             {summary.duration_ms:.0f} ms")
        logger.info(f"Table saved to: {Path(table_path).absolute()}")
        logger.info("=" * 70)
        return 0

    except FileNotFoundError as e:
        logging.error(f"File error: {e}")
        return 1
    except ValueError as e:
        logging.error(f"Validation error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Recompute interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
