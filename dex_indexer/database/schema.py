"""PostgreSQL schema definition for the DEX indexer"""


def get_schema_sql() -> str:
    """
    Returns the complete SQL schema for the indexer database.

    Tables:
    - block, tx, tx_event: raw chain facts
    - dex_token, dex_pair: token registry and canonical pair ordering
    - event_*: one table per DEX action
    - derived_tick_state: latest reserves per (pair, token, tick, fee)
    - derived_tick_state_log: every reserves change, for as-of reads
    - derived_tx_price_data, derived_tx_volume_data: changelogs of derived values
    """
    return """
-- Block table: one row per ingested block height
CREATE TABLE IF NOT EXISTS block (
    id BIGSERIAL PRIMARY KEY,
    height BIGINT NOT NULL UNIQUE,
    time TEXT NOT NULL,
    time_unix BIGINT NOT NULL
);

-- Transaction table: successful transactions only
CREATE TABLE IF NOT EXISTS tx (
    id BIGSERIAL PRIMARY KEY,
    hash VARCHAR(64) NOT NULL UNIQUE,
    block_height BIGINT NOT NULL,
    tx_index INTEGER NOT NULL,
    code INTEGER NOT NULL DEFAULT 0,
    info TEXT,
    gas_wanted BIGINT,
    gas_used BIGINT,
    codespace TEXT,
    CONSTRAINT tx_block_fk FOREIGN KEY (block_height)
        REFERENCES block(height) ON DELETE CASCADE,
    CONSTRAINT tx_position_unique UNIQUE (block_height, tx_index)
);

-- Transaction events with decoded attributes
CREATE TABLE IF NOT EXISTS tx_event (
    id BIGSERIAL PRIMARY KEY,
    tx_id BIGINT NOT NULL,
    event_index INTEGER NOT NULL,
    type TEXT NOT NULL,
    attributes JSONB NOT NULL DEFAULT '{}'::jsonb,
    CONSTRAINT tx_event_tx_fk FOREIGN KEY (tx_id)
        REFERENCES tx(id) ON DELETE CASCADE,
    CONSTRAINT tx_event_position_unique UNIQUE (tx_id, event_index)
);

-- Token registry: denoms seen in DEX events
CREATE TABLE IF NOT EXISTS dex_token (
    id BIGSERIAL PRIMARY KEY,
    denom TEXT NOT NULL UNIQUE
);

-- Pairs in canonical (token0, token1) order fixed at first sight
CREATE TABLE IF NOT EXISTS dex_pair (
    id BIGSERIAL PRIMARY KEY,
    token0 TEXT NOT NULL,
    token1 TEXT NOT NULL,
    CONSTRAINT dex_pair_token0_fk FOREIGN KEY (token0)
        REFERENCES dex_token(denom),
    CONSTRAINT dex_pair_token1_fk FOREIGN KEY (token1)
        REFERENCES dex_token(denom),
    CONSTRAINT dex_pair_distinct_check CHECK (token0 <> token1)
);

-- Swap events
CREATE TABLE IF NOT EXISTS event_swap (
    id BIGSERIAL PRIMARY KEY,
    tx_event_id BIGINT NOT NULL UNIQUE REFERENCES tx_event(id) ON DELETE CASCADE,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    creator TEXT NOT NULL,
    receiver TEXT NOT NULL,
    token0 TEXT NOT NULL,
    token1 TEXT NOT NULL,
    token_in TEXT NOT NULL,
    token_out TEXT NOT NULL,
    amount_in NUMERIC NOT NULL,
    amount_out NUMERIC NOT NULL
);

-- Deposit and DepositLP events
CREATE TABLE IF NOT EXISTS event_deposit (
    id BIGSERIAL PRIMARY KEY,
    tx_event_id BIGINT NOT NULL UNIQUE REFERENCES tx_event(id) ON DELETE CASCADE,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    action VARCHAR(20) NOT NULL,
    creator TEXT NOT NULL,
    receiver TEXT NOT NULL,
    token0 TEXT NOT NULL,
    token1 TEXT NOT NULL,
    tick_index BIGINT NOT NULL,
    fee BIGINT NOT NULL,
    reserves0_deposited NUMERIC NOT NULL,
    reserves1_deposited NUMERIC NOT NULL,
    shares_minted NUMERIC NOT NULL
);

-- Withdraw and WithdrawLP events
CREATE TABLE IF NOT EXISTS event_withdraw (
    id BIGSERIAL PRIMARY KEY,
    tx_event_id BIGINT NOT NULL UNIQUE REFERENCES tx_event(id) ON DELETE CASCADE,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    action VARCHAR(20) NOT NULL,
    creator TEXT NOT NULL,
    receiver TEXT NOT NULL,
    token0 TEXT NOT NULL,
    token1 TEXT NOT NULL,
    tick_index BIGINT NOT NULL,
    fee BIGINT NOT NULL,
    reserves0_withdrawn NUMERIC NOT NULL,
    reserves1_withdrawn NUMERIC NOT NULL,
    shares_removed NUMERIC NOT NULL
);

-- PlaceLimitOrder events
CREATE TABLE IF NOT EXISTS event_place_limit_order (
    id BIGSERIAL PRIMARY KEY,
    tx_event_id BIGINT NOT NULL UNIQUE REFERENCES tx_event(id) ON DELETE CASCADE,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    creator TEXT NOT NULL,
    receiver TEXT NOT NULL,
    token0 TEXT NOT NULL,
    token1 TEXT NOT NULL,
    token_in TEXT NOT NULL,
    token_out TEXT NOT NULL,
    amount_in NUMERIC NOT NULL,
    limit_tick BIGINT NOT NULL,
    order_type TEXT NOT NULL,
    shares NUMERIC NOT NULL,
    tranche_key TEXT NOT NULL
);

-- TickUpdate events with the change against the previous reserves
CREATE TABLE IF NOT EXISTS event_tick_update (
    id BIGSERIAL PRIMARY KEY,
    tx_event_id BIGINT NOT NULL UNIQUE REFERENCES tx_event(id) ON DELETE CASCADE,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    token0 TEXT NOT NULL,
    token1 TEXT NOT NULL,
    token_in TEXT NOT NULL,
    tick_index BIGINT NOT NULL,
    fee BIGINT NOT NULL,
    reserves NUMERIC NOT NULL,
    reserves_diff NUMERIC NOT NULL
);

-- Latest reserves per (pair, token, tick, fee)
CREATE TABLE IF NOT EXISTS derived_tick_state (
    id BIGSERIAL PRIMARY KEY,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    token_id BIGINT NOT NULL REFERENCES dex_token(id),
    tick_index BIGINT NOT NULL,
    fee BIGINT NOT NULL,
    reserves NUMERIC NOT NULL,
    block_height BIGINT NOT NULL,
    tx_index INTEGER NOT NULL,
    event_index INTEGER NOT NULL,
    CONSTRAINT derived_tick_state_key_unique UNIQUE (pair_id, token_id, tick_index, fee)
);

-- Every reserves change, ordered by sequence position
CREATE TABLE IF NOT EXISTS derived_tick_state_log (
    id BIGSERIAL PRIMARY KEY,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    token_id BIGINT NOT NULL REFERENCES dex_token(id),
    tick_index BIGINT NOT NULL,
    fee BIGINT NOT NULL,
    reserves NUMERIC NOT NULL,
    block_height BIGINT NOT NULL,
    tx_index INTEGER NOT NULL,
    event_index INTEGER NOT NULL,
    CONSTRAINT derived_tick_state_log_position_unique
        UNIQUE (pair_id, token_id, tick_index, fee, block_height, tx_index, event_index)
);

-- Best tick changelog per pair
CREATE TABLE IF NOT EXISTS derived_tx_price_data (
    id BIGSERIAL PRIMARY KEY,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    block_height BIGINT NOT NULL,
    tx_index INTEGER NOT NULL,
    event_index INTEGER NOT NULL,
    highest_tick_0 BIGINT,
    lowest_tick_1 BIGINT,
    last_tick BIGINT,
    CONSTRAINT derived_tx_price_data_position_unique
        UNIQUE (pair_id, block_height, tx_index, event_index)
);

-- Total reserves changelog per pair
CREATE TABLE IF NOT EXISTS derived_tx_volume_data (
    id BIGSERIAL PRIMARY KEY,
    pair_id BIGINT NOT NULL REFERENCES dex_pair(id),
    block_height BIGINT NOT NULL,
    tx_index INTEGER NOT NULL,
    event_index INTEGER NOT NULL,
    reserves_float_0 DOUBLE PRECISION NOT NULL DEFAULT 0,
    reserves_float_1 DOUBLE PRECISION NOT NULL DEFAULT 0,
    CONSTRAINT derived_tx_volume_data_position_unique
        UNIQUE (pair_id, block_height, tx_index, event_index)
);

-- Indexes for block and tx lookups
CREATE INDEX IF NOT EXISTS idx_block_time_unix ON block(time_unix DESC);
CREATE INDEX IF NOT EXISTS idx_tx_block_height ON tx(block_height);
CREATE INDEX IF NOT EXISTS idx_tx_event_tx ON tx_event(tx_id);

-- One pair per unordered token set
CREATE UNIQUE INDEX IF NOT EXISTS idx_dex_pair_tokens_unordered
    ON dex_pair(LEAST(token0, token1), GREATEST(token0, token1));

-- Indexes for event lookups by pair
CREATE INDEX IF NOT EXISTS idx_event_swap_pair ON event_swap(pair_id);
CREATE INDEX IF NOT EXISTS idx_event_tick_update_pair ON event_tick_update(pair_id);

-- Indexes for derived state scans
CREATE INDEX IF NOT EXISTS idx_tick_state_pair_token_reserves
    ON derived_tick_state(pair_id, token_id, tick_index) WHERE reserves <> 0;
CREATE INDEX IF NOT EXISTS idx_tick_state_log_as_of
    ON derived_tick_state_log(pair_id, token_id, block_height);
CREATE INDEX IF NOT EXISTS idx_price_data_pair_position
    ON derived_tx_price_data(pair_id, block_height DESC, tx_index DESC, event_index DESC);
CREATE INDEX IF NOT EXISTS idx_volume_data_pair_position
    ON derived_tx_volume_data(pair_id, block_height DESC, tx_index DESC, event_index DESC);

-- Comments for documentation
COMMENT ON TABLE block IS 'Ingested block heights and their timestamps';
COMMENT ON TABLE tx IS 'Successful transactions (code = 0) in ingestion order';
COMMENT ON TABLE dex_pair IS 'Token pairs with canonical order chosen at first sight';
COMMENT ON TABLE derived_tick_state IS 'Latest reserves per pair, token, tick index and fee tier';
COMMENT ON TABLE derived_tick_state_log IS 'Append-only reserves history backing as-of reads';
COMMENT ON TABLE derived_tx_price_data IS 'Changelog of best ticks, one row per change';
COMMENT ON TABLE derived_tx_volume_data IS 'Changelog of total reserves, one row per change';
COMMENT ON COLUMN event_tick_update.reserves_diff IS 'New reserves minus the previous reserves for the same key';
"""
