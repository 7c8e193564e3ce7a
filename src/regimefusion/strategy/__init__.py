from .risk import RiskSizer, leverage_for, risk_reward_for

__all__ = ["RiskSizer", "leverage_for", "risk_reward_for"]
