from swingtrader.execution.exit_evaluator import ExitEvaluator

__all__ = [
    "ExitEvaluator",
]
