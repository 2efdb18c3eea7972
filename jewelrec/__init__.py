"""JewelRec: hybrid product recommendation engine for a jewellery storefront.

This package ranks catalog products for a shopper and/or the product they are
viewing by blending collaborative filtering, content similarity and trending
signals, and rebuilds the product-to-product similarity table offline.

Modules:
    recommender: Scoring strategies, score fusion and the offline similarity job
    store: Data feed interfaces and in-memory implementations
    service: Engine boundary used by the surrounding storefront
"""

__version__ = "0.1.0"
