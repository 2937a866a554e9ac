"""payline: plan-to-data convergence and incentive payout calculation."""

__version__ = "0.1.0"
