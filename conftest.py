import shutil
from pathlib import Path

import pytest

from encounter_forge.models import PartyMember
from encounter_forge.storage import Storage

TEST_DATA_DIR = Path("data-tests")

BALANCED_ENCOUNTER = """# ⚔️ Ambush at the Ford

## 📊 Encounter Summary
- **Difficulty:** Challenging
- **Total XP:** 2,700 XP (adjusted: 5,400 XP)

## 🐉 Creatures
### 2× Ogre (CR 2, 450 XP)
- **AC:** 11 | **HP:** 59 (7d10 + 21)
- **Attacks:** Greatclub: +6 to hit, reach 5 ft., 13 (2d8 + 4) bludgeoning

### Troll (CR 5, 1,800 XP)
- **AC:** 15 | **HP:** 84 (8d10 + 40)
- **Special Abilities:** Regeneration 10 unless hit by acid or fire

## 🎯 Tactics
The ogres hold the ford while the troll circles through the reeds.
"""

GOBLIN_HORDE = """# ⚔️ Goblin Rabble

## 🐉 Creatures
### 8× Goblin (CR 1/4, 50 XP)
- **AC:** 15 | **HP:** 7 (2d6)
"""


@pytest.fixture
def data_dir():
    """Wipe and re-create data-tests/ for the test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    TEST_DATA_DIR.mkdir()
    yield TEST_DATA_DIR
    # leave data-tests around after tests for inspection; CI can ignore it


@pytest.fixture
def storage(data_dir) -> Storage:
    return Storage(data_dir)


@pytest.fixture
def party() -> list[PartyMember]:
    """Four level-5 adventurers: easy 1000, medium 2000, hard 3000, deadly 4400."""
    return [
        PartyMember(class_name="Fighter", level=5),
        PartyMember(class_name="Wizard", level=5),
        PartyMember(class_name="Cleric", level=5),
        PartyMember(class_name="Rogue", level=5),
    ]


@pytest.fixture
def balanced_text() -> str:
    return BALANCED_ENCOUNTER


@pytest.fixture
def goblin_text() -> str:
    return GOBLIN_HORDE
