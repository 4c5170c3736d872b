#!/usr/bin/env python3
"""Seed a development database with users, groups, categories and a chat channel.

Usage:
    python scripts/seed_dev_data.py

Reads BABBLE_DATABASE_URL (or defaults to localhost). Creates the tables first.
"""

import asyncio

from sqlalchemy import text

from babble.core.auth import create_jwt
from babble.core.database import dispose_engine, get_session_factory, init_db

USERS = [
    (1, "alice", False),
    (2, "bob", False),
    (3, "admin", True),
]
GROUPS = [(10, "trust_level_0"), (20, "staff")]
MEMBERSHIPS = [(10, 1), (10, 2), (20, 3)]
CATEGORIES = [(30, "General", False), (31, "Staff Lounge", True)]
LOBBY_TOPIC_ID = 100


async def seed():
    await init_db()

    async with get_session_factory()() as session:
        for uid, username, admin in USERS:
            await session.execute(text("""
                INSERT INTO users (id, username, admin, post_count, created_at, updated_at)
                VALUES (:id, :username, :admin, 0, now(), now())
                ON CONFLICT (id) DO NOTHING
            """), {"id": uid, "username": username, "admin": admin})

        for gid, name in GROUPS:
            await session.execute(text("""
                INSERT INTO groups (id, name) VALUES (:id, :name)
                ON CONFLICT (id) DO NOTHING
            """), {"id": gid, "name": name})

        for gid, uid in MEMBERSHIPS:
            await session.execute(text("""
                INSERT INTO group_users (group_id, user_id) VALUES (:gid, :uid)
                ON CONFLICT DO NOTHING
            """), {"gid": gid, "uid": uid})

        for cid, name, restricted in CATEGORIES:
            await session.execute(text("""
                INSERT INTO categories (id, name, read_restricted) VALUES (:id, :name, :restricted)
                ON CONFLICT (id) DO NOTHING
            """), {"id": cid, "name": name, "restricted": restricted})

        await session.execute(text("""
            INSERT INTO category_groups (category_id, group_id) VALUES (31, 20)
            ON CONFLICT DO NOTHING
        """))

        # One group channel open to trust level 0
        await session.execute(text("""
            INSERT INTO topics (id, title, archetype, permissions, user_id,
                                highest_post_number, created_at, updated_at)
            VALUES (:id, 'Lobby', 'chat', 'group', -1, 0, now(), now())
            ON CONFLICT (id) DO NOTHING
        """), {"id": LOBBY_TOPIC_ID})
        await session.execute(text("""
            INSERT INTO topic_allowed_groups (topic_id, group_id) VALUES (:tid, 10)
            ON CONFLICT DO NOTHING
        """), {"tid": LOBBY_TOPIC_ID})

        await session.commit()

    await dispose_engine()
    print(f"Seeded {len(USERS)} users, {len(GROUPS)} groups, {len(CATEGORIES)} categories.")
    for uid, username, _ in USERS:
        print(f"  {username}: Bearer {create_jwt(uid)}")


if __name__ == "__main__":
    asyncio.run(seed())
