"""Schema v1 - Order book store.

This version includes tables for:
- Orders
- Token sets and their cached top buy
- Tokens and their cached floor sell / top buy
- Token set membership
- Token balances
"""

# Shape shared by every cached best-order pointer
def _pointer_columns(prefix):
    return [
        {'name': f'{prefix}_id', 'type': 'TEXT'},
        {'name': f'{prefix}_value', 'type': 'NUMERIC(78, 0)'},
        {'name': f'{prefix}_maker', 'type': 'TEXT'},
        {'name': f'{prefix}_valid_between', 'type': 'TSTZRANGE'},
    ]

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'orders',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'side', 'type': 'TEXT'},
                {'name': 'token_set_id', 'type': 'TEXT'},
                {'name': 'maker', 'type': 'TEXT'},
                {'name': 'value', 'type': 'NUMERIC(78, 0)'},
                {'name': 'valid_between', 'type': 'TSTZRANGE', 'default': "tstzrange(now(), 'infinity', '[]')"},
                {'name': 'fillability_status', 'type': 'TEXT', 'nullable': False, 'default': "'fillable'"},
                {'name': 'approval_status', 'type': 'TEXT', 'nullable': False, 'default': "'approved'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {
                    'name': 'idx_orders_best_by_token_set',
                    'columns': ['token_set_id', 'side', 'value', 'id'],
                    'where': "fillability_status = 'fillable' AND approval_status = 'approved'"
                },
                {'name': 'idx_orders_maker', 'columns': ['maker']}
            ]
        },
        {
            'name': 'token_sets',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                *_pointer_columns('top_buy'),
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        },
        {
            'name': 'tokens',
            'columns': [
                {'name': 'contract', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_id', 'type': 'NUMERIC(78, 0)', 'nullable': False},
                *_pointer_columns('floor_sell'),
                *_pointer_columns('top_buy'),
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'primary_key': ['contract', 'token_id']
        },
        {
            'name': 'token_sets_tokens',
            'columns': [
                {'name': 'token_set_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'contract', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_id', 'type': 'NUMERIC(78, 0)', 'nullable': False}
            ],
            'primary_key': ['token_set_id', 'contract', 'token_id'],
            'foreign_keys': [
                {'columns': ['token_set_id'], 'references': 'token_sets(id)'}
            ],
            'indexes': [
                {'name': 'idx_token_sets_tokens_token', 'columns': ['contract', 'token_id']}
            ]
        },
        {
            'name': 'nft_balances',
            'columns': [
                {'name': 'contract', 'type': 'TEXT', 'nullable': False},
                {'name': 'token_id', 'type': 'NUMERIC(78, 0)', 'nullable': False},
                {'name': 'owner', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'NUMERIC(78, 0)', 'nullable': False, 'default': '0'}
            ],
            'primary_key': ['contract', 'token_id', 'owner']
        }
    ]
}
