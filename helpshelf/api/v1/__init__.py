from helpshelf.api.v1 import onboarding

__all__ = [
    "onboarding",
]
