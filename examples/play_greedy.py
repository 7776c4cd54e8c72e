#!/usr/bin/env python3
"""Play a difficulty with a simple greedy bot and print the turn log.

The bot keeps the current cells on. When a turn fails it undoes it, adds
the cells the game suggested and tries again, giving up after a few
retries.
"""

import sys

from cellgame.api.sessions import SessionManager

MAX_RETRIES = 5


def main(difficulty: str = "easy", turns: int = 30):
    mgr = SessionManager(db_path=None)
    session = mgr.create_session(difficulty=difficulty)
    config = session.config

    print(f"=== Cell Game: {difficulty} ===")
    print(f"Levels: {config.map_levels}")
    print(f"Energy budget: {config.total_energy:.0f}")
    print(f"Minions: {len(session.record.scenario_state.minions)}")
    print()

    on = set(session.record.scenario_state.active_cell_ids())

    print(f"{'Step':>4} {'Cells':>5} {'Used':>6} {'Left':>7} {'Tries':>5}  Message")
    print("-" * 70)

    resp = None
    for _ in range(turns):
        for attempt in range(1, MAX_RETRIES + 1):
            resp = mgr.step(session.id, sorted(on))
            if not resp["gameOver"] or not resp["failure"]:
                break
            hints = resp["cellsShouldBeOn"]
            if not hints or attempt == MAX_RETRIES:
                break
            mgr.undo(session.id)
            on.update(hints)

        print(
            f"{resp['currentStep']:4d} {len(resp['functionalCellIds']):5d} "
            f"{resp['energyConsumed']:6.1f} {resp['energyLeft']:7.1f} "
            f"{attempt:5d}  {resp['msg']}"
        )
        if resp["gameOver"]:
            break

    print()
    print(f"=== Final state: {mgr.get_session(session.id).status} ===")
    if resp is not None:
        print(f"Total energy used: {resp['totalEnergyConsumed']:.1f}")


if __name__ == "__main__":
    main(*sys.argv[1:2])
