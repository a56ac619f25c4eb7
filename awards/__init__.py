"""Award workflow: trainer code lookup, stamp awarding and the award log."""

from .routes import create_awards_blueprint

__all__ = ["create_awards_blueprint"]
