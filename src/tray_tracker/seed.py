import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from faker import Faker
from motor.motor_asyncio import AsyncIOMotorClient

TRAY_TYPES = ["fusion", "revision", "mi", "complete"]
# Legacy hyphenated values are kept on purpose: seeded data mimics old documents
TRAY_STATUSES = ["available", "in-use", "in_use", "cleaning", "maintenance"]
TRAY_LOCATIONS = ["trunk", "facility", "corporate"]
FACILITY_TYPES = ["medical_facility", "corporate", "distribution"]

# Share of generated documents in each field layout
LAYOUT_WEIGHTS = {"legacy": 0.6, "migrated": 0.2, "both": 0.1, "neither": 0.1}


def _pick_layout(rng: random.Random) -> str:
    layouts = list(LAYOUT_WEIGHTS)
    return rng.choices(layouts, weights=[LAYOUT_WEIGHTS[k] for k in layouts], k=1)[0]


def _timestamp(rng: random.Random) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=rng.randint(0, 720), minutes=rng.randint(0, 1440))


def generate_tray(fake: Faker, rng: random.Random, layout: Optional[str] = None) -> Dict[str, Any]:
    """Generate one tray document in legacy, migrated, mixed or bare layout."""
    layout = layout or _pick_layout(rng)
    tray_type = rng.choice(TRAY_TYPES)
    label = f"{fake.word().title()} {tray_type.title()} Set"
    doc: Dict[str, Any] = {
        "type": tray_type,
        "status": rng.choice(TRAY_STATUSES),
        "location": rng.choice(TRAY_LOCATIONS),
        "notes": fake.sentence(),
    }

    if layout == "legacy":
        doc["name"] = label
        doc["createdAt"] = _timestamp(rng)
        if rng.random() < 0.5:
            doc["lastModified"] = _timestamp(rng)
        else:
            doc["updatedAt"] = _timestamp(rng)
    elif layout == "migrated":
        doc["tray_name"] = label
        doc["created_at"] = _timestamp(rng)
        doc["updated_at"] = _timestamp(rng)
    elif layout == "both":
        doc["name"] = label
        doc["tray_name"] = label if rng.random() < 0.5 else f"{label} (renamed)"
        created = _timestamp(rng)
        doc["createdAt"] = created
        doc["created_at"] = created
    return doc


def generate_facility(fake: Faker, rng: random.Random, layout: Optional[str] = None) -> Dict[str, Any]:
    layout = layout or _pick_layout(rng)
    doc: Dict[str, Any] = {
        "name": f"{fake.city()} {rng.choice(['Medical Center', 'Hospital', 'Surgical Center'])}",
        "type": rng.choice(FACILITY_TYPES),
        "address": fake.address(),
    }
    if layout in ("legacy", "both"):
        doc["createdAt"] = _timestamp(rng)
        doc["updatedAt"] = _timestamp(rng)
    if layout in ("migrated", "both"):
        doc["created_at"] = doc.get("createdAt") or _timestamp(rng)
        doc["updated_at"] = _timestamp(rng)
    return doc


GENERATORS = {
    "tray_tracking": generate_tray,
    "facilities": generate_facility,
}


def generate_documents(collection: str, count: int, seed: Optional[int] = None) -> List[Dict[str, Any]]:
    if collection not in GENERATORS:
        raise ValueError(f"No demo generator for '{collection}'. Supported: {', '.join(sorted(GENERATORS))}")
    fake = Faker()
    rng = random.Random(seed)
    if seed is not None:
        fake.seed_instance(seed)
    generator = GENERATORS[collection]
    return [generator(fake, rng) for _ in range(count)]


async def seed_collection(
    client: AsyncIOMotorClient,
    db_name: str,
    coll_name: str,
    count: int,
    seed: Optional[int] = None,
) -> int:
    """Seed a collection with demo documents in mixed field layouts."""
    coll = client[db_name][coll_name]
    docs = generate_documents(coll_name, count, seed)

    if docs:
        result = await coll.insert_many(docs)
        return len(result.inserted_ids)
    return 0
