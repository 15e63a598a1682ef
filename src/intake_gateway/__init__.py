"""
Intake Gateway - classification, routing and multi-agent workflow orchestration
for inbound legal communications.

Every message gets a routing decision, even when the inference capability,
storage or delivery collaborators are slow, unavailable or return garbage.
"""

__version__ = "1.0.0"

__all__ = [
    "models",
    "services",
    "lib",
    "cli"
]
