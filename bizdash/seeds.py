import argparse
import logging
from datetime import datetime, timedelta
from typing import List

from faker import Faker
from sqlalchemy import func, select

from .auth import hash_password
from .database import Base, engine, session_scope
from .models import DataEntry, User
from .schemas import Preferences

logger = logging.getLogger(__name__)

fake = Faker()
Faker.seed(1234)

CATEGORIES = ["electronics", "clothing", "books", "home", "garden", "toys"]
TAG_POOL = ["online", "store", "promo", "wholesale", "q1", "q2", "q3", "q4"]
SAMPLE_PASSWORD = "Sample123"


def sample_entries(user_id: int, count: int, days: int = 90) -> List[DataEntry]:
    """Build ``count`` plausible entries spread over the last ``days`` days."""
    today = datetime.utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    entries = []
    for _ in range(count):
        sales = round(fake.pyfloat(min_value=50, max_value=5000, right_digits=2), 2)
        # Margins between -10% and 45%, never above sales.
        profit = round(sales * fake.pyfloat(min_value=-0.1, max_value=0.45), 2)
        entries.append(
            DataEntry(
                user_id=user_id,
                date=today - timedelta(days=fake.random_int(min=0, max=days - 1)),
                sales=sales,
                profit=min(profit, sales),
                category=fake.random_element(CATEGORIES),
                description=fake.sentence(nb_words=6),
                tags=fake.random_elements(TAG_POOL, length=2, unique=True),
                source="import",
                import_batch="seed",
            )
        )
    return entries


def seed(users_count: int, entries_per_user: int) -> None:
    """Seed sample accounts with entries; running it twice adds nothing.

    - Users are uniquely identified by email: sample{n}@example.com
    - A user that already owns entries is left untouched
    """
    Base.metadata.create_all(bind=engine)
    with session_scope() as session:
        existing_users = {u.email: u for u in session.scalars(select(User)).all()}

        for i in range(1, users_count + 1):
            email = f"sample{i}@example.com"
            user = existing_users.get(email)
            if not user:
                user = User(
                    name=fake.name()[:50],
                    email=email,
                    password_hash=hash_password(SAMPLE_PASSWORD),
                    role="admin" if i == 1 else "user",
                    preferences=Preferences().model_dump(by_alias=True),
                )
                session.add(user)
                session.flush()  # assign user.id

            owned = session.scalar(
                select(func.count(DataEntry.id)).where(DataEntry.user_id == user.id)
            )
            if owned:
                continue
            session.add_all(sample_entries(user.id, entries_per_user))
            logger.info("Seeded %d entries for %s", entries_per_user, email)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Seed the database with sample data.")
    parser.add_argument(
        "--users",
        type=int,
        default=3,
        help="Number of sample users to create (default: 3).",
    )
    parser.add_argument(
        "--entries-per-user",
        type=int,
        default=120,
        help="Number of data entries per user (default: 120).",
    )
    args = parser.parse_args()

    seed(users_count=args.users, entries_per_user=args.entries_per_user)
    print(f"Seeding complete. Sample accounts use the password {SAMPLE_PASSWORD!r}.")


if __name__ == "__main__":
    main()
