"""TaxThink AI — conversational tax thinking companion (FastAPI backend)."""
