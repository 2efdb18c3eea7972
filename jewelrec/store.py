"""Data feeds consumed by the recommendation engine.

The engine reads three external stores: the behavior event log, the product
catalog and the product similarity table. This module declares the query
surface it needs from each (as ``typing.Protocol`` classes) and provides
in-memory implementations backed by pandas, plus CSV loaders and joblib
persistence for the similarity table.

Every query takes an explicit row cap; none of them can return an unbounded
result.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

import joblib
import pandas as pd

from jewelrec.exceptions import DataFetchError
from jewelrec.recommender.models import (
    BehaviorEvent,
    Product,
    ProductSimilarityEdge,
    RecommendationType,
)
from jewelrec.recommender.utils import as_utc

# Configure module logger
logger = logging.getLogger(__name__)

SIMILARITY_TABLE_FILENAME = "product_similarities.joblib"

EVENT_COLUMNS = ["user_id", "product_id", "behavior_type", "created_at"]
PRODUCT_COLUMNS = ["id", "category", "material", "price"]
EDGE_COLUMNS = ["product_id", "recommended_product_id", "score", "recommendation_type"]


class BehaviorStore(Protocol):
    """Behavior event log. All queries return newest events first."""

    def fetch_user_events(
        self, user_id: str, since: datetime, limit: int
    ) -> List[BehaviorEvent]: ...

    def fetch_events_for_products(
        self,
        product_ids: Iterable[str],
        since: datetime,
        limit: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[BehaviorEvent]: ...

    def fetch_events_for_users(
        self, user_ids: Iterable[str], since: datetime, limit: int
    ) -> List[BehaviorEvent]: ...

    def fetch_recent_events(
        self, since: datetime, limit: int, identified_only: bool = False
    ) -> List[BehaviorEvent]: ...

    def append(self, event: BehaviorEvent) -> None: ...


class CatalogStore(Protocol):
    """Product catalog."""

    def get_product(self, product_id: str) -> Optional[Product]: ...

    def get_products(
        self, product_ids: Iterable[str], active_only: bool = True
    ) -> List[Product]: ...

    def list_active_products(
        self,
        limit: Optional[int] = None,
        exclude_ids: Iterable[str] = (),
        featured_only: bool = False,
    ) -> List[Product]: ...


class SimilarityStore(Protocol):
    """Precomputed product-to-product similarity edges."""

    def fetch_forward(self, product_id: str, limit: int) -> List[ProductSimilarityEdge]: ...

    def fetch_backward(self, product_id: str, limit: int) -> List[ProductSimilarityEdge]: ...

    def delete_by_type(self, recommendation_type: RecommendationType) -> int: ...

    def insert_many(self, edges: Sequence[ProductSimilarityEdge]) -> int: ...

    def all_edges(
        self, recommendation_type: Optional[RecommendationType] = None
    ) -> List[ProductSimilarityEdge]: ...


def _to_timestamp(moment: datetime) -> pd.Timestamp:
    return pd.Timestamp(as_utc(moment))


def _optional_str(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    return str(value)


def _as_bool(value, default: bool) -> bool:
    if value is None or pd.isna(value):
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


class InMemoryBehaviorStore:
    """Behavior log held in a pandas DataFrame.

    Writes replace the frame under a lock; readers work on whichever frame
    was current when their query started.
    """

    def __init__(self, events: Optional[Iterable[BehaviorEvent]] = None):
        self._lock = threading.Lock()
        rows = [event.model_dump() for event in events or []]
        self._events = self._prepare(pd.DataFrame(rows, columns=EVENT_COLUMNS))

    @staticmethod
    def _prepare(df: pd.DataFrame) -> pd.DataFrame:
        df = df[EVENT_COLUMNS].copy()
        df["user_id"] = df["user_id"].map(_optional_str).astype(object)
        df["product_id"] = df["product_id"].astype(str)
        df["behavior_type"] = df["behavior_type"].astype(str)
        df["created_at"] = pd.to_datetime(df["created_at"], utc=True)
        return df.reset_index(drop=True)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "InMemoryBehaviorStore":
        """Build a store from a frame with the event columns."""
        missing = set(EVENT_COLUMNS) - set(df.columns)
        if missing:
            raise ValueError(f"Behavior frame missing required columns: {missing}")
        store = cls()
        store._events = cls._prepare(df)
        return store

    def __len__(self) -> int:
        return len(self._events)

    def _query(self, mask_fn, limit: int) -> List[BehaviorEvent]:
        df = self._events
        try:
            selected = df[mask_fn(df)]
            selected = selected.sort_values("created_at", ascending=False, kind="mergesort")
            selected = selected.head(limit)
            return [
                BehaviorEvent(
                    user_id=_optional_str(row.user_id),
                    product_id=row.product_id,
                    behavior_type=row.behavior_type,
                    created_at=row.created_at.to_pydatetime(),
                )
                for row in selected.itertuples(index=False)
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise DataFetchError("behavior_events", e) from e

    def fetch_user_events(
        self, user_id: str, since: datetime, limit: int
    ) -> List[BehaviorEvent]:
        since_ts = _to_timestamp(since)
        return self._query(
            lambda df: (df["user_id"] == user_id) & (df["created_at"] >= since_ts),
            limit,
        )

    def fetch_events_for_products(
        self,
        product_ids: Iterable[str],
        since: datetime,
        limit: int,
        exclude_user_id: Optional[str] = None,
    ) -> List[BehaviorEvent]:
        since_ts = _to_timestamp(since)
        wanted = set(product_ids)

        def mask(df):
            selected = df["product_id"].isin(wanted) & (df["created_at"] >= since_ts)
            selected &= df["user_id"].notna()
            if exclude_user_id is not None:
                selected &= df["user_id"] != exclude_user_id
            return selected

        return self._query(mask, limit)

    def fetch_events_for_users(
        self, user_ids: Iterable[str], since: datetime, limit: int
    ) -> List[BehaviorEvent]:
        since_ts = _to_timestamp(since)
        wanted = set(user_ids)
        return self._query(
            lambda df: df["user_id"].isin(wanted) & (df["created_at"] >= since_ts),
            limit,
        )

    def fetch_recent_events(
        self, since: datetime, limit: int, identified_only: bool = False
    ) -> List[BehaviorEvent]:
        since_ts = _to_timestamp(since)

        def mask(df):
            selected = df["created_at"] >= since_ts
            if identified_only:
                selected &= df["user_id"].notna()
            return selected

        return self._query(mask, limit)

    def append(self, event: BehaviorEvent) -> None:
        row = self._prepare(pd.DataFrame([event.model_dump()], columns=EVENT_COLUMNS))
        with self._lock:
            frames = [frame for frame in (self._events, row) if not frame.empty]
            self._events = pd.concat(frames, ignore_index=True) if len(frames) > 1 else row


class InMemoryCatalogStore:
    """Product catalog keyed by product ID."""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {p.id: p for p in products or []}

    def __len__(self) -> int:
        return len(self._products)

    def upsert(self, product: Product) -> None:
        with self._lock:
            products = dict(self._products)
            products[product.id] = product
            self._products = products

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    def get_products(
        self, product_ids: Iterable[str], active_only: bool = True
    ) -> List[Product]:
        products = self._products
        found = [products[pid] for pid in set(product_ids) if pid in products]
        if active_only:
            found = [p for p in found if p.is_active]
        return found

    def list_active_products(
        self,
        limit: Optional[int] = None,
        exclude_ids: Iterable[str] = (),
        featured_only: bool = False,
    ) -> List[Product]:
        """Active products ordered by ID."""
        excluded = set(exclude_ids)
        active = [
            p
            for pid, p in sorted(self._products.items())
            if p.is_active and pid not in excluded and (p.is_featured or not featured_only)
        ]
        return active if limit is None else active[:limit]


class InMemorySimilarityStore:
    """Similarity table held in a pandas DataFrame.

    ``delete_by_type`` and ``insert_many`` each swap in a new frame, so a
    reader racing a recomputation may see the table between the two calls.
    """

    def __init__(self, edges: Optional[Iterable[ProductSimilarityEdge]] = None):
        self._lock = threading.Lock()
        self._edges = self._frame(edges or [])

    @staticmethod
    def _frame(edges: Iterable[ProductSimilarityEdge]) -> pd.DataFrame:
        rows = [
            {
                "product_id": e.product_id,
                "recommended_product_id": e.recommended_product_id,
                "score": float(e.score),
                "recommendation_type": e.recommendation_type.value,
            }
            for e in edges
        ]
        df = pd.DataFrame(rows, columns=EDGE_COLUMNS)
        return df.astype({"score": "float64"})

    @staticmethod
    def _edges_from(df: pd.DataFrame) -> List[ProductSimilarityEdge]:
        return [
            ProductSimilarityEdge(
                product_id=row.product_id,
                recommended_product_id=row.recommended_product_id,
                score=row.score,
                recommendation_type=RecommendationType(row.recommendation_type),
            )
            for row in df.itertuples(index=False)
        ]

    def __len__(self) -> int:
        return len(self._edges)

    def _top(self, column: str, product_id: str, limit: int) -> List[ProductSimilarityEdge]:
        df = self._edges
        try:
            selected = df[df[column] == product_id]
            selected = selected.sort_values(
                ["score", "product_id", "recommended_product_id"],
                ascending=[False, True, True],
                kind="mergesort",
            )
            return self._edges_from(selected.head(limit))
        except (KeyError, TypeError, ValueError) as e:
            raise DataFetchError("product_similarities", e) from e

    def fetch_forward(self, product_id: str, limit: int) -> List[ProductSimilarityEdge]:
        return self._top("product_id", product_id, limit)

    def fetch_backward(self, product_id: str, limit: int) -> List[ProductSimilarityEdge]:
        return self._top("recommended_product_id", product_id, limit)

    def delete_by_type(self, recommendation_type: RecommendationType) -> int:
        with self._lock:
            keep = self._edges["recommendation_type"] != RecommendationType(recommendation_type).value
            removed = int((~keep).sum())
            self._edges = self._edges[keep].reset_index(drop=True)
        return removed

    def insert_many(self, edges: Sequence[ProductSimilarityEdge]) -> int:
        if not edges:
            return 0
        new_rows = self._frame(edges)
        with self._lock:
            frames = [frame for frame in (self._edges, new_rows) if not frame.empty]
            self._edges = pd.concat(frames, ignore_index=True)
        return len(new_rows)

    def all_edges(
        self, recommendation_type: Optional[RecommendationType] = None
    ) -> List[ProductSimilarityEdge]:
        df = self._edges
        if recommendation_type is not None:
            df = df[df["recommendation_type"] == RecommendationType(recommendation_type).value]
        return self._edges_from(df)

    def to_dataframe(self) -> pd.DataFrame:
        return self._edges.copy()


def load_behavior_csv(csv_path: str) -> InMemoryBehaviorStore:
    """Load a behavior event log from CSV.

    Args:
        csv_path: CSV with columns user_id, product_id, behavior_type,
            created_at. Empty user_id cells are anonymous events.

    Returns:
        Behavior store holding every row.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
        ValueError: If required columns are missing.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading behavior events from {csv_path}")
    df = pd.read_csv(csv_path, dtype={"user_id": str, "product_id": str})

    missing = set(EVENT_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"CSV missing required columns: {missing}")

    store = InMemoryBehaviorStore.from_dataframe(df)
    logger.info(f"Loaded {len(store)} behavior events")
    return store


def load_catalog_csv(csv_path: str) -> InMemoryCatalogStore:
    """Load a product catalog from CSV.

    Args:
        csv_path: CSV with at least id, category, material, price. Optional
            columns: name, slug, is_featured, is_active, images (``|``
            separated), created_at.

    Raises:
        FileNotFoundError: If the CSV file does not exist.
        ValueError: If required columns are missing or the file is empty.
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading catalog from {csv_path}")
    df = pd.read_csv(csv_path, dtype={"id": str, "price": str})

    missing = set(PRODUCT_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"CSV missing required columns: {missing}")
    if df.empty:
        raise ValueError("Cannot load an empty catalog")

    products = []
    for row in df.to_dict(orient="records"):
        images = row.get("images")
        created_at = row.get("created_at")
        products.append(
            Product(
                id=row["id"],
                name=_optional_str(row.get("name")) or "",
                slug=_optional_str(row.get("slug")) or "",
                category=str(row["category"]),
                material=str(row["material"]),
                price=row["price"],
                is_featured=_as_bool(row.get("is_featured"), False),
                is_active=_as_bool(row.get("is_active"), True),
                images=str(images).split("|") if _optional_str(images) else [],
                created_at=pd.Timestamp(created_at).to_pydatetime() if _optional_str(created_at) else None,
            )
        )

    logger.info(f"Loaded {len(products)} products")
    return InMemoryCatalogStore(products)


def save_similarity_table(
    store: InMemorySimilarityStore,
    output_dir: str,
    filename: str = SIMILARITY_TABLE_FILENAME,
) -> Path:
    """Save the similarity table to disk with joblib.

    Creates the directory if it doesn't exist.

    Returns:
        Path of the written file.
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    table_path = output_path / filename
    joblib.dump(store.to_dataframe(), table_path)
    logger.info(f"Saved {len(store)} similarity edges to {table_path}")
    return table_path


def load_similarity_table(
    model_dir: str,
    filename: str = SIMILARITY_TABLE_FILENAME,
) -> InMemorySimilarityStore:
    """Load a similarity table saved by ``save_similarity_table``.

    Raises:
        FileNotFoundError: If the table file is missing.
    """
    table_path = Path(model_dir) / filename
    if not table_path.exists():
        raise FileNotFoundError(f"Similarity table not found: {table_path}")

    df = joblib.load(table_path)
    store = InMemorySimilarityStore()
    store._edges = df[EDGE_COLUMNS].astype({"score": "float64"}).reset_index(drop=True)
    logger.info(f"Loaded {len(store)} similarity edges from {table_path}")
    return store


def check_similarity_table_exists(model_dir: str) -> bool:
    """Check whether a saved similarity table exists in ``model_dir``."""
    return (Path(model_dir) / SIMILARITY_TABLE_FILENAME).exists()
