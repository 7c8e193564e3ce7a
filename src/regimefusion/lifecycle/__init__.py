from .manager import LifecycleManager, identity_of, signal_identity

__all__ = ["LifecycleManager", "identity_of", "signal_identity"]
