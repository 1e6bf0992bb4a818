"""Telemetry relay agent for temperature/humidity sensor nodes."""
