"""linkwatch: resilience control plane for a link-auditing platform.

Watches load and platform health, steps the service down through
degradation levels, trips circuit breakers around fallible calls, and hands
work to remote CI flows when the primary platform is down.
"""

__version__ = "0.1.0"
