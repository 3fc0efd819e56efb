"""Initial schema for the agent and job registries."""

from __future__ import annotations

from backend.database import Migration


class Migration0001Initial(Migration):
    version = "0001_initial"

    statements = (
        """
        CREATE TABLE IF NOT EXISTS marketplace_agents (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            classification TEXT NOT NULL,
            tags TEXT NOT NULL,
            auto_accept_jobs INTEGER NOT NULL DEFAULT 0,
            is_free INTEGER NOT NULL DEFAULT 0,
            address TEXT NOT NULL,
            description TEXT,
            author_bio TEXT,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS marketplace_jobs (
            id TEXT PRIMARY KEY,
            seq INTEGER NOT NULL,
            title TEXT NOT NULL,
            category TEXT NOT NULL,
            tags TEXT NOT NULL,
            description TEXT,
            payment_type TEXT NOT NULL,
            budget_min REAL NOT NULL,
            budget_max REAL NOT NULL,
            deadline TEXT NOT NULL,
            priority TEXT NOT NULL,
            skill_level TEXT NOT NULL,
            deliverables TEXT,
            auto_assign INTEGER NOT NULL DEFAULT 0,
            allow_bidding INTEGER NOT NULL DEFAULT 0,
            enable_escrow INTEGER NOT NULL DEFAULT 0,
            agent_id TEXT,
            status TEXT NOT NULL,
            result TEXT,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL,
            CHECK (budget_min <= budget_max)
        )
        """,
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_marketplace_jobs_seq ON marketplace_jobs(seq)",
        "CREATE INDEX IF NOT EXISTS idx_marketplace_jobs_eligible ON marketplace_jobs(status, auto_assign, agent_id)",
        "CREATE INDEX IF NOT EXISTS idx_marketplace_agents_created_at ON marketplace_agents(created_at)",
    )


__all__ = ["Migration0001Initial"]
