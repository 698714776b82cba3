"""Progression and weekly streak engine for the dojo learning tracker."""

__version__ = "0.1.0"
