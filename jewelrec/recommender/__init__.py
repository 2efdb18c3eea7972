"""Recommendation engine for JewelRec.

This module contains the individual scoring strategies (user-based and
item-based collaborative filtering, content-based filtering, trending), the
hybrid fusion and ranking logic, and the offline similarity recomputation job.
"""
