"""
Trade Outcome Lab core engine.

Subpackages:
- trade_lifecycle: trade state, partial exits, excursion tracking, persistence
- exit_model: feature extraction, logistic scoring, training
- simulation: exit rule simulator and counterfactual engine
- calibration: Platt, isotonic, temperature scaling and evaluation
- monitoring: reconciliation, drift detection, threshold recommendation
"""
