from __future__ import annotations

from gateflow.specialists.base import SpecialistAgent


class ProductManagerAgent(SpecialistAgent):
    role = "product_manager"
    document_category = "REQUIREMENTS"
    document_title = "Product Requirements Document"
    prompt = """
You are the Product Manager specialist.
Turn the approved intake into a Product Requirements Document with user stories
and acceptance criteria. Record significant scope decisions with record_decision.
"""
