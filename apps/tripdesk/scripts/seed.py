from __future__ import annotations

import argparse
import random
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from faker import Faker

from tripdesk.avatars import placeholder_avatar_url
from tripdesk.config import Config
from tripdesk.schema import SCHEMA_SQL

ITEMS = [
    "Water bottles",
    "Snacks",
    "First aid kit",
    "Sodas",
    "Bluetooth speaker",
    "Picnic blankets",
    "Fruit",
    "Football",
    "Sunscreen",
    "Paper plates",
]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed Trip Desk data")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--participants", type=int, default=40, help="Number of participants")
    parser.add_argument("--donations", type=int, default=25, help="Number of donations")
    parser.add_argument("--reset", action="store_true", help="Delete existing DB before seeding")
    return parser.parse_args()


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def kenyan_phone() -> str:
    prefix = random.choice(["+254", "0"])
    return f"{prefix}{random.choice('71')}{random.randint(0, 99_999_999):08d}"


def main() -> None:
    args = parse_args()
    random.seed(args.seed)
    faker = Faker()
    Faker.seed(args.seed)

    db_path = Path(Config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if args.reset and db_path.exists():
        db_path.unlink()

    conn = connect(str(db_path))
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()

        start = datetime.now(timezone.utc) - timedelta(days=30)
        participants = []
        statuses = ["pending", "partial", "paid"]
        status_weights = [0.3, 0.3, 0.4]

        for i in range(args.participants):
            full_name = faker.name()
            guests = random.randint(1, 4)
            status = random.choices(statuses, weights=status_weights, k=1)[0]
            if status == "paid":
                amount = guests * Config.TRIP_COST
            elif status == "partial":
                amount = random.randint(1, guests * Config.TRIP_COST - 1)
            else:
                amount = 0
            avatar_url = placeholder_avatar_url(full_name) if random.random() < 0.7 else None
            participant_id = uuid.uuid4().hex
            created_at = start + timedelta(minutes=37 * i, seconds=random.randint(0, 59))

            conn.execute(
                """
                INSERT INTO participants (id, full_name, phone_number, email, number_of_guests,
                                          payment_status, amount_paid, avatar_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    participant_id,
                    full_name,
                    kenyan_phone(),
                    faker.email(),
                    guests,
                    status,
                    amount,
                    avatar_url,
                    created_at.isoformat(timespec="microseconds"),
                ),
            )
            participants.append({"id": participant_id, "full_name": full_name, "created_at": created_at})

        donation_count = 0
        for _ in range(args.donations if participants else 0):
            donor = random.choice(participants)
            created_at = donor["created_at"] + timedelta(hours=random.randint(1, 72))
            conn.execute(
                """
                INSERT INTO donations (id, participant_id, participant_name, item_name, quantity, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    uuid.uuid4().hex,
                    donor["id"],
                    donor["full_name"],
                    random.choice(ITEMS),
                    random.randint(1, 24),
                    faker.sentence(nb_words=8) if random.random() < 0.4 else None,
                    created_at.isoformat(timespec="microseconds"),
                ),
            )
            donation_count += 1

        conn.commit()

        print("Seed complete")
        print(f"Participants: {len(participants)}")
        print(f"Donations: {donation_count}")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
