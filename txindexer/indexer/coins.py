"""
Coin String Arithmetic

Amounts on the wire are base-unit integers glued to a denomination
("1500000uatom", "10ibc/27394FB..."). All sums use Python int, never float:
18-decimal tokens routinely exceed 2**53.
"""

import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

# Cosmos denom grammar: letter first, then letters/digits and / : . _ -
COIN_PATTERN = re.compile(r"(\d+)([a-zA-Z][a-zA-Z0-9/:._-]*)")
EXACT_COIN_PATTERN = re.compile(r"^(\d+)([a-zA-Z][a-zA-Z0-9/:._-]*)$")


def format_coin(amount, denom) -> Optional[str]:
    """'<amount><denom>' or None when either part is missing."""
    if amount is None or amount == "" or not denom:
        return None
    return f"{amount}{denom}"


def coin_from_dict(coin) -> Optional[str]:
    """Format a {"amount": .., "denom": ..} coin object."""
    if not isinstance(coin, dict):
        return None
    return format_coin(coin.get("amount"), coin.get("denom"))


def parse_coins(value: str) -> List[Tuple[int, str]]:
    """Parse a comma-separated coin list, skipping malformed entries."""
    coins = []
    if not value:
        return coins
    for part in str(value).split(","):
        match = COIN_PATTERN.search(part.strip())
        if match:
            coins.append((int(match.group(1)), match.group(2)))
    return coins


def sum_by_denom(coins: Iterable[Tuple[int, str]]) -> "OrderedDict[str, int]":
    """Group-and-sum quantities per denom, keeping first-seen denom order."""
    totals: "OrderedDict[str, int]" = OrderedDict()
    for quantity, denom in coins:
        totals[denom] = totals.get(denom, 0) + quantity
    return totals


def format_totals(totals: Dict[str, int], with_denom: bool = True) -> Optional[str]:
    if not totals:
        return None
    if with_denom:
        return ", ".join(f"{total}{denom}" for denom, total in totals.items())
    return ",".join(str(total) for total in totals.values())


def aggregate_amounts(amounts: Iterable[Optional[str]]) -> Optional[str]:
    """
    Sum message-level amounts per denom.

    Only exact '<int><denom>' strings take part; vote summaries and other
    non-coin amounts are ignored. Several denoms are joined with ', '.
    """
    coins = []
    for amount in amounts:
        if not amount:
            continue
        match = EXACT_COIN_PATTERN.match(amount.strip())
        if match:
            coins.append((int(match.group(1)), match.group(2)))
    return format_totals(sum_by_denom(coins))
