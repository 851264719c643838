"""deskrelay -- Remote desktop control driven by a vision model.

An agent on the controlled machine registers with a relay under a
six-digit pairing code. A controller claims the code, then drives the
machine over a per-machine command topic: screenshots flow to a
computer-use model, and the model's actions flow back as canonical
commands executed by a local input host.
"""

__version__ = "0.1.0"
