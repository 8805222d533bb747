"""Create (or promote) an admin profile. Admins cannot sign up through the API."""

import argparse
import asyncio

from civic_connect.core.config import Settings
from civic_connect.core.database import Database
from civic_connect.core.exceptions import DuplicateRecord
from civic_connect.models.profile_model import Role
from civic_connect.services.mongodb_service import MongoStore
from civic_connect.utils.security import get_password_hash
from civic_connect.utils.validators import normalize_email, validate_email, validate_password


async def seed_admin(email: str, password: str, display_name: str) -> bool:
    print("🔧 Seeding admin profile...")
    print("=" * 50)

    settings = Settings.from_env()
    database = Database(settings)
    if not await database.connect(max_retries=1):
        print("❌ Connection failed")
        return False

    try:
        store = MongoStore(database.db)
        existing = await store.find_profile_by_email(email)
        if existing is not None:
            if existing.role == Role.ADMIN:
                print(f"⚠️  Admin {email} already exists.")
            else:
                await database.db.profiles.update_one({"_id": existing.id}, {"$set": {"role": Role.ADMIN.value}})
                print(f"⬆️  Promoted {email} from {existing.role.value} to admin.")
            return True

        try:
            profile = await store.create_profile(
                email=email,
                password_hash=get_password_hash(password),
                display_name=display_name,
                role=Role.ADMIN,
                language=settings.default_language,
            )
        except DuplicateRecord:
            print(f"⚠️  Admin {email} was created concurrently.")
            return True

        print("=" * 50)
        print("✅ Admin created successfully!")
        print(f"📧 Email: {profile.email}")
        print(f"🆔 Id: {profile.id}")
        print("=" * 50)
        print("⚠️  Please change the password after first login!")
        return True
    finally:
        await database.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Create an admin profile")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--name", default="Administrator")
    args = parser.parse_args()

    email = normalize_email(args.email)
    if not validate_email(email):
        parser.error("invalid email address")
    if not validate_password(args.password):
        parser.error("password must be at least 6 characters")

    ok = asyncio.run(seed_admin(email, args.password, args.name))
    raise SystemExit(0 if ok else 1)


if __name__ == "__main__":
    main()
