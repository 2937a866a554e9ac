"""Plan reading: calculation intents and component requirements."""

from payline.planning.intent import ComponentIntent, parse_intent
from payline.planning.requirements import PlanRequirement, extract_requirements

__all__ = ["ComponentIntent", "PlanRequirement", "extract_requirements", "parse_intent"]
