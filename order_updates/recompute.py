"""Recomputation of the cached best orders touched by an order.

Three pointers are maintained:

- ``token_sets.top_buy_*``: highest fillable, approved buy order on a
  multi-token set (collection, attribute or list).
- ``tokens.floor_sell_*``: lowest fillable, approved sell order on any set
  containing the token.
- ``tokens.top_buy_*``: highest fillable, approved buy order on any set
  containing the token, as long as someone other than its maker holds a
  positive balance of the token.

Each pointer is rewritten by one statement that reads the current best order
and updates the cache only when the resolved order id differs from the stored
one. Recomputing is therefore idempotent and safe to run concurrently. Equal
values are broken by the lowest order id.
"""

import logging
from typing import Optional

from asyncpg.pool import Pool

from .models import RecomputeResult, Side, TokenPointer

logger = logging.getLogger(__name__)

# Single-token sets are covered by the token level pointers alone
SINGLE_TOKEN_SET_PREFIX = "token:"

ORDER_QUERY = '''
    SELECT o.side, o.token_set_id
    FROM orders o
    WHERE o.id = $1
'''

TOKEN_SET_TOP_BUY_QUERY = '''
    WITH x AS (
        SELECT
            ts.id AS token_set_id,
            y.order_id,
            y.value,
            y.maker,
            y.valid_between
        FROM token_sets ts
        LEFT JOIN LATERAL (
            SELECT
                o.id AS order_id,
                o.value,
                o.maker,
                o.valid_between
            FROM orders o
            WHERE o.token_set_id = ts.id
            AND o.side = 'buy'
            AND o.fillability_status = 'fillable'
            AND o.approval_status = 'approved'
            ORDER BY o.value DESC, o.id ASC
            LIMIT 1
        ) y ON TRUE
        WHERE ts.id = $1
    )
    UPDATE token_sets AS ts SET
        top_buy_id = x.order_id,
        top_buy_value = x.value,
        top_buy_maker = x.maker,
        top_buy_valid_between = x.valid_between
    FROM x
    WHERE ts.id = x.token_set_id
    AND ts.top_buy_id IS DISTINCT FROM x.order_id
    RETURNING ts.id
'''

TOKENS_FLOOR_SELL_QUERY = '''
    WITH z AS (
        SELECT
            x.contract,
            x.token_id,
            y.order_id,
            y.value,
            y.maker,
            y.valid_between
        FROM (
            SELECT tst.contract, tst.token_id
            FROM orders o
            JOIN token_sets_tokens tst ON o.token_set_id = tst.token_set_id
            WHERE o.id = $1
        ) x
        LEFT JOIN LATERAL (
            SELECT
                o.id AS order_id,
                o.value,
                o.maker,
                o.valid_between
            FROM orders o
            JOIN token_sets_tokens tst ON o.token_set_id = tst.token_set_id
            WHERE tst.contract = x.contract
            AND tst.token_id = x.token_id
            AND o.side = 'sell'
            AND o.fillability_status = 'fillable'
            AND o.approval_status = 'approved'
            ORDER BY o.value ASC, o.id ASC
            LIMIT 1
        ) y ON TRUE
    )
    UPDATE tokens AS t SET
        floor_sell_id = z.order_id,
        floor_sell_value = z.value,
        floor_sell_maker = z.maker,
        floor_sell_valid_between = z.valid_between
    FROM z
    WHERE t.contract = z.contract
    AND t.token_id = z.token_id
    AND t.floor_sell_id IS DISTINCT FROM z.order_id
    RETURNING t.contract, t.token_id, t.floor_sell_id AS order_id, t.floor_sell_value AS value
'''

TOKENS_TOP_BUY_QUERY = '''
    WITH z AS (
        SELECT
            x.contract,
            x.token_id,
            y.order_id,
            y.value,
            y.maker,
            y.valid_between
        FROM (
            SELECT tst.contract, tst.token_id
            FROM orders o
            JOIN token_sets_tokens tst ON o.token_set_id = tst.token_set_id
            WHERE o.id = $1
        ) x
        LEFT JOIN LATERAL (
            SELECT
                o.id AS order_id,
                o.value,
                o.maker,
                o.valid_between
            FROM orders o
            JOIN token_sets_tokens tst ON o.token_set_id = tst.token_set_id
            WHERE tst.contract = x.contract
            AND tst.token_id = x.token_id
            AND o.side = 'buy'
            AND o.fillability_status = 'fillable'
            AND o.approval_status = 'approved'
            AND EXISTS (
                SELECT FROM nft_balances nb
                WHERE nb.contract = x.contract
                AND nb.token_id = x.token_id
                AND nb.amount > 0
                AND nb.owner != o.maker
            )
            ORDER BY o.value DESC, o.id ASC
            LIMIT 1
        ) y ON TRUE
    )
    UPDATE tokens AS t SET
        top_buy_id = z.order_id,
        top_buy_value = z.value,
        top_buy_maker = z.maker,
        top_buy_valid_between = z.valid_between
    FROM z
    WHERE t.contract = z.contract
    AND t.token_id = z.token_id
    AND t.top_buy_id IS DISTINCT FROM z.order_id
    RETURNING t.contract, t.token_id, t.top_buy_id AS order_id, t.top_buy_value AS value
'''

TOKEN_QUERIES = {
    Side.SELL: TOKENS_FLOOR_SELL_QUERY,
    Side.BUY: TOKENS_TOP_BUY_QUERY,
}

def is_single_token_set(token_set_id: str) -> bool:
    return token_set_id.startswith(SINGLE_TOKEN_SET_PREFIX)

class BestOrderRecomputer:
    """Recomputes cached best-order pointers from the orders table."""

    def __init__(self, pool: Pool, queue_name: Optional[str] = None) -> None:
        self.pool = pool
        self.log_prefix = f"[{queue_name}] " if queue_name else ""

    async def recompute(self, order_id: str) -> RecomputeResult:
        """Refresh every pointer the given order can affect.

        Orders that do not exist, or lack a side or token set, are skipped.

        Args:
            order_id: Id of the order that changed

        Returns:
            What was rewritten
        """
        result = RecomputeResult(order_id=order_id)

        async with self.pool.acquire() as conn:
            order = await conn.fetchrow(ORDER_QUERY, order_id)
            if not order or not order['side'] or not order['token_set_id']:
                logger.debug(f"{self.log_prefix}Order {order_id} has no side or token set, skipping")
                return result

            try:
                side = Side(order['side'])
            except ValueError:
                logger.warning(f"{self.log_prefix}Order {order_id} has unknown side {order['side']!r}, skipping")
                return result

            token_set_id = order['token_set_id']
            result.side = side
            result.token_set_id = token_set_id

            logger.info(
                f"{self.log_prefix}Recomputing cached {side.value} data given token set {token_set_id}"
            )

            if side is Side.BUY and not is_single_token_set(token_set_id):
                updated = await conn.fetch(TOKEN_SET_TOP_BUY_QUERY, token_set_id)
                result.token_set_updated = bool(updated)

            rows = await conn.fetch(TOKEN_QUERIES[side], order_id)
            result.tokens_updated = [
                TokenPointer(
                    contract=row['contract'],
                    token_id=row['token_id'],
                    order_id=row['order_id'],
                    value=row['value']
                )
                for row in rows
            ]

        if result.token_set_updated or result.tokens_updated:
            logger.debug(
                f"{self.log_prefix}Order {order_id} updated token set: {result.token_set_updated}, "
                f"tokens: {len(result.tokens_updated)}"
            )
        return result
