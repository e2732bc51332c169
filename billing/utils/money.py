"""
Montants monétaires: conversion centimes et répartition proportionnelle.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence


def to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: Optional[int]) -> float:
    return round((cents or 0) / 100, 2)


def round2(amount: float) -> float:
    return float(Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def allocate_proportionally(total: float, weights: Sequence[float]) -> List[float]:
    """
    Répartit `total` au prorata des poids (montants bruts avant remise).
    Arrondi au centime; le reliquat d'arrondi va à la dernière ligne pour que la somme soit exacte.
    Ex: allocate_proportionally(3, [90, 10]) -> [2.70, 0.30]
    """
    if not weights:
        return []
    base = sum(weights)
    if base <= 0:
        shares = [0.0] * len(weights)
        shares[-1] = round2(total)
        return shares
    shares = [round2(total * w / base) for w in weights[:-1]]
    shares.append(round2(total - sum(shares)))
    return shares
