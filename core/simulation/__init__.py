"""
Exit simulation and counterfactual analysis.
"""

from core.simulation.exit_simulator import ExitRules, SimulatedExit, simulate_exit
from core.simulation.counterfactual import (
    CounterfactualEngine,
    CounterfactualResult,
    CounterfactualScenario,
    OptimalExitResult,
    generate_preset_scenarios,
)

__all__ = [
    "ExitRules",
    "SimulatedExit",
    "simulate_exit",
    "CounterfactualEngine",
    "CounterfactualResult",
    "CounterfactualScenario",
    "OptimalExitResult",
    "generate_preset_scenarios",
]
