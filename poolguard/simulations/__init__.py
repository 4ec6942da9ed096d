"""
PoolGuard Simulations.

Available simulations:
- oversubscription_demo: end-to-end claims pipeline with an oversubscribed round
"""

from .oversubscription_demo import run_demo, DemoConfig

__all__ = ["run_demo", "DemoConfig"]
