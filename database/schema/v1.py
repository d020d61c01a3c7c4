"""Schema v1 - Initial contract market schema.

This version includes tables for:
- Users keyed by external auth identity
- Contract listings with finite supply
- Contract headers and their ownership state
- Transaction records for purchase auditing
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'email', 'type': 'TEXT'},
                {'name': 'auth_provider', 'type': 'VARCHAR(32)', 'nullable': False},
                {'name': 'auth_subject', 'type': 'VARCHAR(191)', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_users_email', 'columns': ['email']},
                {'name': 'idx_users_auth', 'columns': ['auth_provider', 'auth_subject'], 'unique': True}
            ]
        },
        {
            'name': 'contract_listings',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
                {'name': 'list_price_nanos', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'supply_limit', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'supply_remaining', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'exercise_by', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'chk_listings_price', 'expression': 'list_price_nanos >= 0'},
                {'name': 'chk_listings_supply', 'expression': 'supply_remaining >= 0 AND supply_remaining <= supply_limit'}
            ],
            'foreign_keys': [
                {'columns': ['seller_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_listings_seller', 'columns': ['seller_id']},
                {'name': 'idx_listings_price', 'columns': ['list_price_nanos']},
                {'name': 'idx_listings_exercise_by', 'columns': ['exercise_by']}
            ]
        },
        {
            'name': 'contract_headers',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'contract_listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_headers_listing', 'columns': ['listing_id']}
            ]
        },
        {
            'name': 'contract_states',
            'columns': [
                {'name': 'header_id', 'type': 'UUID', 'primary_key': True},
                {'name': 'owner_id', 'type': 'UUID', 'nullable': False},
                {'name': 'last_purchase_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'draft'"}
            ],
            'foreign_keys': [
                {'columns': ['header_id'], 'references': 'contract_headers(id) ON DELETE CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_states_owner', 'columns': ['owner_id']},
                {'name': 'idx_states_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'transaction_records',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'listing_id', 'type': 'UUID', 'nullable': False},
                {'name': 'seller_id', 'type': 'UUID'},
                {'name': 'buyer_id', 'type': 'UUID', 'nullable': False},
                {'name': 'purchase_quantity', 'type': 'INT8', 'nullable': False},
                {'name': 'unit_price_nanos', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'"},
                {'name': 'checkout_session_id', 'type': 'TEXT'},
                {'name': 'payment_intent_id', 'type': 'TEXT'},
                {'name': 'currency', 'type': 'VARCHAR(8)'},
                {'name': 'platform_fee_nanos', 'type': 'INT8', 'nullable': False, 'default': '0'},
                {'name': 'fulfilled', 'type': 'BOOL', 'nullable': False, 'default': 'false'},
                {'name': 'fulfilled_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'failure_reason', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_transactions_listing', 'columns': ['listing_id']},
                {'name': 'idx_transactions_buyer', 'columns': ['buyer_id']},
                {'name': 'idx_transactions_seller', 'columns': ['seller_id']},
                {'name': 'idx_transactions_status', 'columns': ['status']}
            ]
        }
    ],
    'triggers': [
        {
            'name': 'trg_users_updated_at',
            'table': 'users',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'set_updated_at',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        },
        {
            'name': 'trg_listings_updated_at',
            'table': 'contract_listings',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'set_updated_at',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        },
        {
            'name': 'trg_transactions_updated_at',
            'table': 'transaction_records',
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_name': 'set_updated_at',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        }
    ],
    'migrations': []
}
