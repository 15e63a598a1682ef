"""Routing engine, workflow orchestrator, state store, pipeline and adapters."""
