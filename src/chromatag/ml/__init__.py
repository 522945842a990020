"""Inference providers, model management and image materialization."""
