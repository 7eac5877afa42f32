from app.models.registrant import Registrant

__all__ = [
    "Registrant",
]
