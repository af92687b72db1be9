from .weekly_rollup_job import run_weekly_rollup, build_contributions

__all__ = [
    'run_weekly_rollup',
    'build_contributions'
]
