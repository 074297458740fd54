from .auth import ActorMiddleware

__all__ = ["ActorMiddleware"]
