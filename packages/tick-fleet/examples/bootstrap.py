"""Bootstrap -- one fresh site growing its own workforce.

Demonstrates:
- Building a simulated host on the engine's world
- Running the host and the fleet as two systems
- Reading per-tick reports and the operational console

Run: python -m examples.bootstrap
"""

import logging

from tick import Engine
from tick_fleet import Console, Environment, Fleet, make_fleet_system, make_world_system

SITE = "W1N1"


def build_host(engine: Engine) -> Environment:
    env = Environment(engine.world)
    env.add_controller(SITE, level=1, owner=env.username)
    env.add_spawn(SITE, "Spawn1")
    env.add_source(SITE, 10, 10)
    env.add_source(SITE, 40, 40)
    return env


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    engine = Engine(tps=20, seed=7)
    env = build_host(engine)
    fleet = Fleet(env)
    failures = []

    def on_report(report):
        failures.extend(report.failures)

    engine.add_system(make_world_system(env))
    engine.add_system(make_fleet_system(fleet, on_report))
    engine.run(200)

    console = Console(fleet)
    print(console.stats())
    print()
    print(console.tasks(SITE))
    print(f"\n{len(failures)} failed steps over {engine.clock.tick_number} ticks.")


if __name__ == "__main__":
    main()
