"""
Seed (or reset) the global QR creation form configuration.

Creates the global form configuration with the default fields, variants and
static field toggles, or overwrites an existing one with the same defaults.
Safe to run repeatedly. Exits 0 on success, 1 on any store error.

Usage (from backend/):
  python -m scripts.seed_default_form_config
  python -m scripts.seed_default_form_config --mongo-uri mongodb://host:27017/authentik --actor <admin_id>
"""
import asyncio
import argparse
import logging
import sys
from pathlib import Path

# Ensure backend root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from database import get_db_context
from services.form_config_rules import ShapeViolationError
from services.form_config_seeder import seed_default_form_config
from services.form_config_store import FormConfigStore, StoreFault, VersionConflictError


async def run(mongo_uri: str = None, actor: str = "SYSTEM") -> int:
    print("Seeding default form configuration...")
    try:
        async with get_db_context(mongo_uri) as db:
            result = await seed_default_form_config(FormConfigStore(db), actor=actor)
    except ShapeViolationError as e:
        print(f"Error seeding form config: {e}", file=sys.stderr)
        for violation in e.violations:
            print(f"  {violation.path}: {violation.message}", file=sys.stderr)
        return 1
    except (StoreFault, VersionConflictError) as e:
        print(f"Error seeding form config: {e}", file=sys.stderr)
        return 1

    if result.action == "created":
        print("Created default global form configuration")
    else:
        print("Updated existing global form configuration")
    for line in result.summary():
        print(f"   {line}")
    print("\nSeeding completed successfully!\n")
    return 0


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    parser = argparse.ArgumentParser(description="Seed the default global form configuration")
    parser.add_argument("--mongo-uri", help="MongoDB connection string (default: MONGODB_URI env)")
    parser.add_argument("--actor", default="SYSTEM", help="Actor recorded as createdBy/updatedBy")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(mongo_uri=args.mongo_uri, actor=args.actor)))


if __name__ == "__main__":
    main()
