"""Shared fixtures: a small travel vault seeded across collections."""

import tempfile
from pathlib import Path
import pytest
import pytest_asyncio

from roamdex.engine.config import Config
from roamdex.engine.store import MemoryRecordStore


SEED_RECORDS = {
    "pins": [
        {
            "id": "p1",
            "title": "Eiffel Tower",
            "description": "Iconic iron tower in Paris. Amazing views at sunset.",
            "location": "Paris, France",
            "tags": ["landmark", "paris"],
            "createdAt": "2024-05-01T10:00:00",
        },
        {
            "id": "p2",
            "title": "Senso-ji Temple",
            "description": "Ancient Buddhist temple in Tokyo with a busy market street.",
            "location": "Tokyo",
            "tags": ["temple", "culture"],
            "createdAt": "2024-06-02T09:00:00",
        },
    ],
    "people": [
        {
            "id": "pe1",
            "name": "Maria Lopez",
            "description": "Met Maria at a cooking class in Paris.",
            "location": "Paris",
            "tags": ["friend"],
            "createdAt": "2024-05-02T18:00:00",
        },
        {
            "id": "pe2",
            "name": "Kenji Sato",
            "description": "Tour guide in Kyoto who knows every shrine.",
            "location": "Kyoto",
            "tags": ["guide"],
            "createdAt": "2024-06-05T08:00:00",
        },
    ],
    "journal": [
        {
            "id": "j1",
            "title": "Dinner in Paris",
            "content": "Had an amazing dinner with Maria in Paris. The food was incredible.",
            "location": "Paris",
            "tags": ["food", "paris"],
            "createdAt": "2024-05-02T22:00:00",
        },
        {
            "id": "j2",
            "title": "Hiking Mount Fuji",
            "content": "Long hike up the mountain. Beautiful sunrise from the summit.",
            "location": "Japan",
            "tags": ["nature", "hiking"],
            "createdAt": "2024-06-10T05:00:00",
        },
    ],
    "expenses": [
        {
            "id": "e1",
            "title": "Museum tickets",
            "description": "Louvre museum entry for two",
            "location": "Paris",
            "tags": ["culture"],
            "amount": 34.0,
            "createdAt": "2024-05-03T11:00:00",
        },
    ],
    "food": [
        {
            "id": "f1",
            "name": "Ramen Ichiran",
            "description": "Rich tonkotsu ramen near Shibuya station.",
            "location": "Tokyo",
            "tags": ["ramen", "noodles"],
            "createdAt": "2024-06-03T20:00:00",
        },
    ],
    "gear": [
        {
            "id": "g1",
            "name": "Rain jacket",
            "description": "Lightweight waterproof shell for the mountains.",
            "tags": ["clothing"],
            "createdAt": "2024-04-20T12:00:00",
        },
    ],
}


async def seed(store, records=SEED_RECORDS):
    for collection, items in records.items():
        for item in items:
            await store.add(collection, dict(item))
    return store


@pytest.fixture
def temp_vault():
    """Create a temporary vault for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        vault_path = Path(tmpdir) / "vault"
        vault_path.mkdir()
        yield vault_path


@pytest.fixture
def test_config(temp_vault):
    return Config(vault_path=temp_vault)


@pytest.fixture
def seed_store():
    """Coroutine function that seeds any store with the travel records."""
    return seed


@pytest_asyncio.fixture
async def store():
    """In-memory store seeded with the travel records above."""
    return await seed(MemoryRecordStore())
