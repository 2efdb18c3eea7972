"""CLI script for getting product recommendations.

Useful for testing and evaluation. Loads CSV exports and a saved similarity
table, gets recommendations for a shopper and/or a viewed product and prints
them to the console.
"""

import argparse
import logging
import sys
from typing import Dict, List, Optional, Tuple

from jewelrec.exceptions import RecommendationError
from jewelrec.recommender.models import Product
from jewelrec.service import RecommendationService, build_service_from_csv

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


def get_recommendations(
    service: RecommendationService,
    user_id: Optional[str],
    product_id: Optional[str],
    limit: int,
    explain: bool = False,
) -> Tuple[List[Product], Optional[Dict]]:
    """Get recommendations, optionally with the score breakdown.

    Args:
        service: Wired recommendation service
        user_id: Shopper ID, or None for anonymous
        product_id: Viewed product ID, or None
        limit: Number of recommendations to return
        explain: If True, also return score breakdown

    Returns:
        Tuple of (products, optional breakdown dict)
    """
    if explain:
        return service.recommender.recommend(
            user_id=user_id,
            product_id=product_id,
            limit=limit,
            return_scores=True,
        )
    return service.get_recommendations(user_id, product_id, limit), None


def main() -> None:
    """Main CLI function."""
    parser = argparse.ArgumentParser(
        description="Get product recommendations for a shopper and/or product",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/recommend_cli.py --user u001
  python scripts/recommend_cli.py --product p0042 --limit 4
  python scripts/recommend_cli.py --user u001 --product p0042 --explain
        """
    )

    parser.add_argument("--user", type=str, default=None, help="Shopper ID")
    parser.add_argument("--product", type=str, default=None, help="Viewed product ID")
    parser.add_argument(
        "--limit",
        type=int,
        default=8,
        help="Number of recommendations to return (default: 8)"
    )
    parser.add_argument(
        "--events-csv",
        type=str,
        default="data/behaviors.csv",
        help="Behavior events CSV (default: data/behaviors.csv)"
    )
    parser.add_argument(
        "--catalog-csv",
        type=str,
        default="data/products.csv",
        help="Product catalog CSV (default: data/products.csv)"
    )
    parser.add_argument(
        "--model-dir",
        type=str,
        default="models",
        help="Directory containing the saved similarity table (default: models)"
    )
    parser.add_argument(
        "--explain",
        action="store_true",
        help="Show score breakdown for recommendations"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        service = build_service_from_csv(
            args.events_csv, args.catalog_csv, similarity_dir=args.model_dir
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        products, scores = get_recommendations(
            service, args.user, args.product, args.limit, explain=args.explain
        )
    except RecommendationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    finally:
        service.close()

    print(f"\nRecommendations (user={args.user}, product={args.product}):")
    for rank, product in enumerate(products, start=1):
        featured = " *" if product.is_featured else ""
        print(f"  {rank:2d}. {product.id}  {product.category:<12} {product.material:<10} {product.price:>12}{featured}")

    if args.explain and scores:
        print("\nScore breakdown:")
        print(f"  Method: {scores['method']}")
        if scores["failed_strategies"]:
            print(f"  Failed strategies: {scores['failed_strategies']}")
        for pid, score in scores["hybrid_scores"].items():
            print(f"  {pid}: {score:.4f} from {scores['strategies'][pid]}")

    print()


if __name__ == "__main__":
    main()
