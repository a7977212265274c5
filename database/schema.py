"""
Supabase/PostgreSQL schema for the free delivery bar.

Apply once per project (Supabase SQL editor or `psql -f`). Settings are kept
as one JSONB document per shop so new display fields need no migration.
"""

SCHEMA = """
CREATE TABLE IF NOT EXISTS shops (
    shop_domain TEXT PRIMARY KEY,
    scope TEXT,
    installed_at TIMESTAMPTZ DEFAULT NOW(),
    uninstalled_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS shop_settings (
    shop_domain TEXT PRIMARY KEY REFERENCES shops(shop_domain) ON DELETE CASCADE,
    settings JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS shopify_sessions (
    id TEXT PRIMARY KEY,
    shop TEXT NOT NULL,
    state TEXT,
    is_online BOOLEAN NOT NULL DEFAULT FALSE,
    access_token TEXT NOT NULL,
    scope TEXT,
    expires_at TIMESTAMPTZ,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_shopify_sessions_shop ON shopify_sessions(shop);

CREATE TABLE IF NOT EXISTS subscriptions (
    id BIGSERIAL PRIMARY KEY,
    shop_domain TEXT NOT NULL REFERENCES shops(shop_domain) ON DELETE CASCADE,
    plan_name TEXT NOT NULL,
    charge_id TEXT UNIQUE NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    trial_ends_at TIMESTAMPTZ,
    billing_on TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_shop ON subscriptions(shop_domain, created_at DESC);
"""
