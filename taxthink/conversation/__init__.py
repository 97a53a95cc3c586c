"""Conversation service: jurisdiction prompts, Mistral generation, welcome turns."""
