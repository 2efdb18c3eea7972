"""Generate a fake jewellery catalog and behavior log for development.

This module creates synthetic storefront data for exercising the
recommendation engine: a product catalog CSV and a behavior event CSV with
views, wishlist adds, cart adds and purchases spread over a date range.

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_catalog
        catalog = generate_fake_catalog(num_products=200)
"""

import argparse
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_PRODUCTS = 100
DEFAULT_NUM_EVENTS = 2000
DEFAULT_DAYS_BACK = 90
DEFAULT_RANDOM_SEED = 42
SECONDS_PER_DAY = 86400

CATEGORIES = ["nhan", "day_chuyen", "vong_tay", "bong_tai", "lac", "charm", "nhan_cuoi"]
MATERIALS = ["gold_24k", "gold_18k", "gold_14k", "silver", "platinum", "diamond", "pearl"]
PRICE_LEVELS = [500_000, 2_500_000, 9_000_000, 25_000_000, 80_000_000]

# Relative frequency of each behavior; views dominate as in a real storefront
BEHAVIOR_MIX = {"view": 0.7, "wishlist": 0.1, "add_to_cart": 0.12, "purchase": 0.08}

# Share of events with no signed-in user
ANONYMOUS_SHARE = 0.1


def generate_fake_catalog(
    num_products: int = DEFAULT_NUM_PRODUCTS,
    random_seed: Optional[int] = DEFAULT_RANDOM_SEED,
) -> pd.DataFrame:
    """Generate a synthetic product catalog.

    Args:
        num_products: Number of products. Must be positive.
        random_seed: Seed for reproducible output.

    Returns:
        DataFrame with columns id, name, slug, category, material, price,
        is_featured, is_active, images.

    Raises:
        ValueError: If num_products is not positive.
    """
    if num_products <= 0:
        raise ValueError("num_products must be positive")

    rng = random.Random(random_seed)
    rows = []
    for index in range(1, num_products + 1):
        category = rng.choice(CATEGORIES)
        material = rng.choice(MATERIALS)
        base_price = rng.choice(PRICE_LEVELS)
        price = int(base_price * rng.uniform(0.8, 1.2) // 1000 * 1000)
        slug = f"{category}-{material}-{index}".replace("_", "-")
        rows.append({
            "id": f"p{index:04d}",
            "name": f"{category} {material} #{index}",
            "slug": slug,
            "category": category,
            "material": material,
            "price": price,
            "is_featured": rng.random() < 0.1,
            "is_active": rng.random() < 0.95,
            "images": f"/images/{slug}.jpg",
        })

    return pd.DataFrame(rows)


def generate_fake_events(
    product_ids: list,
    num_users: int = DEFAULT_NUM_USERS,
    num_events: int = DEFAULT_NUM_EVENTS,
    end_date: Optional[datetime] = None,
    days_back: int = DEFAULT_DAYS_BACK,
    random_seed: Optional[int] = DEFAULT_RANDOM_SEED,
) -> pd.DataFrame:
    """Generate a synthetic behavior event log.

    Args:
        product_ids: Products the events may reference.
        num_users: Number of distinct signed-in users. Must be positive.
        num_events: Total number of events. Must be positive.
        end_date: Latest possible timestamp. Defaults to now (UTC).
        days_back: Length of the date range in days.
        random_seed: Seed for reproducible output.

    Returns:
        DataFrame with columns user_id, product_id, behavior_type,
        created_at, sorted by created_at. Anonymous events have an empty
        user_id.

    Raises:
        ValueError: If a count is not positive or product_ids is empty.
    """
    if num_users <= 0 or num_events <= 0 or days_back <= 0:
        raise ValueError("num_users, num_events and days_back must be positive")
    if not product_ids:
        raise ValueError("product_ids must not be empty")

    rng = random.Random(random_seed)
    end_date = end_date or datetime.now(timezone.utc)
    start_date = end_date - timedelta(days=days_back)
    behaviors = list(BEHAVIOR_MIX)
    behavior_weights = list(BEHAVIOR_MIX.values())

    # Each user gravitates towards a small slice of the catalog
    favourites = {
        user: rng.sample(product_ids, k=min(len(product_ids), 8))
        for user in range(1, num_users + 1)
    }

    events = []
    for _ in range(num_events):
        user = rng.randint(1, num_users)
        if rng.random() < 0.6:
            product_id = rng.choice(favourites[user])
        else:
            product_id = rng.choice(product_ids)

        offset = timedelta(seconds=rng.randrange(days_back * SECONDS_PER_DAY))
        events.append({
            "user_id": None if rng.random() < ANONYMOUS_SHARE else f"u{user:03d}",
            "product_id": product_id,
            "behavior_type": rng.choices(behaviors, weights=behavior_weights)[0],
            "created_at": (start_date + offset).isoformat(),
        })

    df = pd.DataFrame(events)
    df = df.sort_values("created_at").reset_index(drop=True)
    return df


def main() -> None:
    """Generate both CSVs and print a summary."""
    parser = argparse.ArgumentParser(description="Generate fake storefront data")
    parser.add_argument("--num-users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--num-products", type=int, default=DEFAULT_NUM_PRODUCTS)
    parser.add_argument("--num-events", type=int, default=DEFAULT_NUM_EVENTS)
    parser.add_argument("--seed", type=int, default=DEFAULT_RANDOM_SEED)
    parser.add_argument(
        "--output-dir",
        type=str,
        default=str(Path(__file__).parent.parent / "data"),
        help="Directory for products.csv and behaviors.csv (default: data/)",
    )
    args = parser.parse_args()

    print(f"Generating {args.num_products} products and {args.num_events} events...")

    try:
        catalog = generate_fake_catalog(args.num_products, random_seed=args.seed)
        events = generate_fake_events(
            product_ids=catalog["id"].tolist(),
            num_users=args.num_users,
            num_events=args.num_events,
            random_seed=args.seed,
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    data_dir = Path(args.output_dir)
    data_dir.mkdir(parents=True, exist_ok=True)
    catalog_path = data_dir / "products.csv"
    events_path = data_dir / "behaviors.csv"
    catalog.to_csv(catalog_path, index=False)
    events.to_csv(events_path, index=False)

    print("\nData generated successfully!")
    print(f"Catalog saved to: {catalog_path}")
    print(f"Events saved to:  {events_path}")
    print("\nData summary:")
    print(f"  Active products: {int(catalog['is_active'].sum())} / {len(catalog)}")
    print(f"  Featured products: {int(catalog['is_featured'].sum())}")
    print(f"  Events by type: {events['behavior_type'].value_counts().to_dict()}")
    print(f"  Unique users: {events['user_id'].nunique()}")
    print(
        f"  Date range: {events['created_at'].min()} to {events['created_at'].max()}"
    )


if __name__ == "__main__":
    main()
