"""Typed DEX actions decoded from transaction events"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Tuple, Union

import structlog

from dex_indexer.ingest.decoder import DecodedTxEvent, get_pair_tokens, is_dex_message

logger = structlog.get_logger()


@dataclass(frozen=True)
class SwapAction:
    """Swap of TokenIn for the pair's other token"""

    creator: str
    receiver: str
    token0: str
    token1: str
    token_in: str
    token_out: str
    amount_in: Decimal
    amount_out: Decimal
    kind: str = "Swap"


@dataclass(frozen=True)
class DepositAction:
    """Liquidity deposit at one tick and fee tier"""

    creator: str
    receiver: str
    token0: str
    token1: str
    tick_index: int
    fee: int
    reserves0_deposited: Decimal
    reserves1_deposited: Decimal
    shares_minted: Decimal
    kind: str = "Deposit"


@dataclass(frozen=True)
class WithdrawAction:
    """Liquidity withdrawal from one tick and fee tier"""

    creator: str
    receiver: str
    token0: str
    token1: str
    tick_index: int
    fee: int
    reserves0_withdrawn: Decimal
    reserves1_withdrawn: Decimal
    shares_removed: Decimal
    kind: str = "Withdraw"


@dataclass(frozen=True)
class PlaceLimitOrderAction:
    """Limit order placed at a tick"""

    creator: str
    receiver: str
    token0: str
    token1: str
    token_in: str
    token_out: str
    amount_in: Decimal
    limit_tick: int
    order_type: str
    shares: Decimal
    tranche_key: str
    kind: str = "PlaceLimitOrder"


@dataclass(frozen=True)
class TickUpdateAction:
    """New absolute reserves of one token at one tick and fee tier"""

    token0: str
    token1: str
    token_in: str
    tick_index: int
    fee: int
    reserves: Decimal
    kind: str = "TickUpdate"


DexAction = Union[
    SwapAction,
    DepositAction,
    WithdrawAction,
    PlaceLimitOrderAction,
    TickUpdateAction,
]


def _require(attributes: Dict[str, str], name: str) -> str:
    value = attributes.get(name)
    if not value:
        raise ValueError(f"missing attribute {name}")
    return value


def _decimal(attributes: Dict[str, str], name: str, default: Optional[str] = None) -> Decimal:
    value = attributes.get(name) or default
    if value is None:
        raise ValueError(f"missing attribute {name}")
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"attribute {name} is not a number: {value!r}")


def _int(attributes: Dict[str, str], name: str, default: Optional[str] = None) -> int:
    value = attributes.get(name) or default
    if value is None:
        raise ValueError(f"missing attribute {name}")
    return int(value)


def _pair(event: DecodedTxEvent) -> Tuple[str, str]:
    tokens = get_pair_tokens(event)
    if tokens is None:
        raise ValueError("missing pair tokens")
    return tokens


def _other_token(token0: str, token1: str, token: str) -> str:
    if token == token0:
        return token1
    if token == token1:
        return token0
    raise ValueError(f"token {token} is not part of pair {token0}<>{token1}")


def _parse_swap(event: DecodedTxEvent) -> SwapAction:
    attrs = event.attributes
    token0, token1 = _pair(event)
    token_in = _require(attrs, "TokenIn")
    return SwapAction(
        creator=attrs.get("Creator", ""),
        receiver=attrs.get("Receiver", ""),
        token0=token0,
        token1=token1,
        token_in=token_in,
        token_out=_other_token(token0, token1, token_in),
        amount_in=_decimal(attrs, "AmountIn"),
        amount_out=_decimal(attrs, "AmountOut"),
    )


def _parse_deposit(event: DecodedTxEvent) -> DepositAction:
    attrs = event.attributes
    token0, token1 = _pair(event)
    return DepositAction(
        creator=attrs.get("Creator", ""),
        receiver=attrs.get("Receiver", ""),
        token0=token0,
        token1=token1,
        tick_index=_int(attrs, "TickIndex"),
        fee=_int(attrs, "Fee", "0"),
        reserves0_deposited=_decimal(attrs, "Reserves0Deposited", "0"),
        reserves1_deposited=_decimal(attrs, "Reserves1Deposited", "0"),
        shares_minted=_decimal(attrs, "SharesMinted", "0"),
        kind=attrs["action"],
    )


def _parse_withdraw(event: DecodedTxEvent) -> WithdrawAction:
    attrs = event.attributes
    token0, token1 = _pair(event)
    return WithdrawAction(
        creator=attrs.get("Creator", ""),
        receiver=attrs.get("Receiver", ""),
        token0=token0,
        token1=token1,
        tick_index=_int(attrs, "TickIndex"),
        fee=_int(attrs, "Fee", "0"),
        reserves0_withdrawn=_decimal(attrs, "Reserves0Withdrawn", "0"),
        reserves1_withdrawn=_decimal(attrs, "Reserves1Withdrawn", "0"),
        shares_removed=_decimal(attrs, "SharesRemoved", "0"),
        kind=attrs["action"],
    )


def _parse_place_limit_order(event: DecodedTxEvent) -> PlaceLimitOrderAction:
    attrs = event.attributes
    token0, token1 = _pair(event)
    token_in = _require(attrs, "TokenIn")
    return PlaceLimitOrderAction(
        creator=attrs.get("Creator", ""),
        receiver=attrs.get("Receiver", ""),
        token0=token0,
        token1=token1,
        token_in=token_in,
        token_out=attrs.get("TokenOut") or _other_token(token0, token1, token_in),
        amount_in=_decimal(attrs, "AmountIn"),
        limit_tick=_int(attrs, "LimitTick"),
        order_type=attrs.get("OrderType", ""),
        shares=_decimal(attrs, "Shares", "0"),
        tranche_key=attrs.get("TrancheKey", ""),
    )


def _parse_tick_update(event: DecodedTxEvent) -> TickUpdateAction:
    attrs = event.attributes
    token0, token1 = _pair(event)
    token_in = _require(attrs, "TokenIn")
    _other_token(token0, token1, token_in)
    return TickUpdateAction(
        token0=token0,
        token1=token1,
        token_in=token_in,
        tick_index=_int(attrs, "TickIndex"),
        fee=_int(attrs, "Fee", "0"),
        reserves=_decimal(attrs, "Reserves", "0"),
    )


ACTION_PARSERS: Dict[str, Callable[[DecodedTxEvent], DexAction]] = {
    "Swap": _parse_swap,
    "Deposit": _parse_deposit,
    "DepositLP": _parse_deposit,
    "Withdraw": _parse_withdraw,
    "WithdrawLP": _parse_withdraw,
    "PlaceLimitOrder": _parse_place_limit_order,
    "TickUpdate": _parse_tick_update,
}


def parse_dex_action(event: DecodedTxEvent) -> Optional[DexAction]:
    """
    Parse a decoded event into its DEX action variant.

    Events that are not DEX messages, unknown actions and actions missing
    required attributes yield None; the last two are logged and skipped.

    Args:
        event: Decoded transaction event

    Returns:
        The action variant, or None
    """
    if not is_dex_message(event):
        return None

    action = event.attributes["action"]
    parser = ACTION_PARSERS.get(action)
    if parser is None:
        logger.debug("dex_action_unrecognized", action=action, event_index=event.index)
        return None

    try:
        return parser(event)
    except ValueError as e:
        logger.warning(
            "dex_action_invalid",
            action=action,
            event_index=event.index,
            error=str(e),
        )
        return None
