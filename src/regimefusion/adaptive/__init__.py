from .controller import AdaptiveParameterController, cooldown_key

__all__ = ["AdaptiveParameterController", "cooldown_key"]
