"""Play a few combat rounds against a character sheet.

Usage:
    python examples/combat_round.py examples/fighter.yaml

Registers an async `Dice` integration, then runs attack commands and shows
which variables each command recomputed.
"""

import asyncio
import random
import sys

from varflow import Engine, EventType, Integration, load_config


def make_dice(seed: int = 7) -> Integration:
    rng = random.Random(seed)
    dice = Integration("Dice")
    last = {"total": 0}

    @dice.operation(is_async=True)
    async def roll(formula: str) -> int:
        count, _, sides = formula.partition("d")
        total = sum(rng.randint(1, int(sides)) for _ in range(int(count or 1)))
        last["total"] = total
        await asyncio.sleep(0)
        return total

    @dice.operation()
    def last_roll() -> int:
        return last["total"]

    return dice


async def play(path: str, rounds: int = 3):
    engine = Engine(load_config(path), integrations=[make_dice()])
    page_id = engine.page_ids()[0]

    await engine.load()
    await engine.resolve_page(page_id)
    print(await engine.page_title(page_id))

    changed: list[str] = []
    engine.events.subscribe(EventType.VARIABLE_RESOLVED, lambda e: changed.append(e.name))

    for i in range(rounds):
        changed.clear()
        result = await engine.run_command(page_id, 'addValue("hp", -Dice.roll("1d8"))')
        status = "ok" if result.ok else f"failed: {result.error}"
        print(f"round {i + 1}: {status}; recomputed {sorted(set(changed))}")
        print("  " + await engine.render(page_id, "HP {hp}/{max_hp} ({hp_pct}%), {status}"))


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(play(sys.argv[1]))
