import asyncio
import json
import os
import sys
import uuid
from sqlalchemy.future import select

from assignment_engine.core.config import settings
from assignment_engine.core.db import SessionLocal, init_models
from assignment_engine.modules.attorneys.models import AttorneyProfile
from assignment_engine.modules.attorneys.repository import ExpertiseRepository

async def seed_expertise(db, org_id, attorney_id, records):
    """
    Upserts the attorney's expertise records, one per practice area.
    """
    repo = ExpertiseRepository(db)
    for rec in records:
        await repo.upsert(
            org_id,
            attorney_id,
            rec["expertise_area"],
            proficiency_level=rec.get("proficiency_level", "BEGINNER"),
            years_experience=rec.get("years_experience", 0),
            cases_handled=rec.get("cases_handled", 0),
            success_rate=rec.get("success_rate"),
        )
        print(f"    - {rec['expertise_area']}: {rec.get('proficiency_level', 'BEGINNER')}")

async def main():
    """
    Seed attorney profiles and expertise from a JSON file (default: attorneys.sample.json next to this script).
    """
    json_file_path = sys.argv[1] if len(sys.argv) > 1 else os.path.join(os.path.dirname(__file__), "attorneys.sample.json")
    org_id = uuid.UUID(os.environ.get("SEED_ORG_ID", settings.DEFAULT_ORG_ID))
    print(f"Seeding attorneys from {json_file_path} into org {org_id}...")

    with open(json_file_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    await init_models()
    async with SessionLocal() as db:
        for entry in data:
            print(f"Processing attorney: {entry['display_name']}")
            result = await db.execute(
                select(AttorneyProfile).where(
                    AttorneyProfile.org_id == org_id,
                    AttorneyProfile.display_name == entry["display_name"],
                )
            )
            attorney = result.scalars().first()

            if attorney is None:
                attorney = AttorneyProfile(
                    id=uuid.UUID(entry["id"]) if entry.get("id") else uuid.uuid4(),
                    org_id=org_id,
                    display_name=entry["display_name"],
                    email=entry.get("email"),
                    max_capacity_points=entry.get("max_capacity_points"),
                    active=entry.get("active", True),
                )
                db.add(attorney)
                await db.flush()
                print(f"  - Created attorney with ID: {attorney.id}")
            else:
                print(f"  - Found existing attorney with ID: {attorney.id}")

            await seed_expertise(db, org_id, attorney.id, entry.get("expertise", []))

        await db.commit()
    print("Seeding complete.")

if __name__ == "__main__":
    asyncio.run(main())
