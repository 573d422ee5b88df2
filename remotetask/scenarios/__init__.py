"""Prebuilt run configurations."""

from __future__ import annotations

__all__ = ["build_algo_task_config", "run_algo_task_scenario"]

from remotetask.scenarios.algo_task import build_algo_task_config, run_algo_task_scenario
